"""
External id derivation.

An event's external_id is a hash over a site-specific tuple of fields,
lower-cased and trimmed, joined with "|". It is the identity key of the
upsert, so the same real-world occurrence must always hash the same way.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import date, datetime
from typing import Any, Mapping, Sequence

from event_ingest.configs.config import SiteConfig

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"


class ExternalIdStrategy:
    """
    Pure, deterministic id derivation for one site.

    If a required field is missing, a random id is returned instead of
    failing. The event is still ingested, but a redelivery of the same
    payload will create a second row.
    """

    def __init__(
        self,
        fields: Sequence[str] = ("title", "date_start", "venue"),
        required_fields: Sequence[str] = ("title", "date_start"),
        algorithm: str = "md5",
    ):
        if not fields:
            raise ValueError("ExternalIdStrategy needs at least one field")
        self.fields = tuple(fields)
        self.required_fields = tuple(required_fields)
        self.algorithm = algorithm

    @classmethod
    def for_site(cls, site: SiteConfig) -> "ExternalIdStrategy":
        return cls(fields=site.id_fields, required_fields=site.id_required_fields)

    @staticmethod
    def canonical_value(value: Any) -> str:
        """Render one field as the lower-cased, trimmed text that gets hashed."""
        if value is None:
            return ""
        if isinstance(value, Mapping):
            # venue payloads sometimes arrive as {"name": ...}
            return ExternalIdStrategy.canonical_value(value.get("name"))
        if isinstance(value, datetime):
            value = value.date()
        if isinstance(value, date):
            return value.isoformat()
        return str(value).strip().lower()

    def canonical_string(self, raw: Mapping[str, Any]) -> str | None:
        """
        Return the joined string that is hashed, or None if a required field is missing.
        """
        parts = []
        for name in self.fields:
            value = self.canonical_value(raw.get(name))
            if not value and name in self.required_fields:
                return None
            parts.append(value)
        return FIELD_SEPARATOR.join(parts)

    def compute(self, raw: Mapping[str, Any]) -> str:
        """Return the external id for a raw or extracted event."""
        canonical = self.canonical_string(raw)
        if canonical is None:
            missing = [
                f for f in self.required_fields if not self.canonical_value(raw.get(f))
            ]
            fallback = uuid.uuid4().hex
            logger.warning(
                f"Missing id field(s) {missing}; using random external_id {fallback}",
                extra={"payload": {"title": raw.get("title"), "missing": missing}},
            )
            return fallback

        return hashlib.new(self.algorithm, canonical.encode("utf-8")).hexdigest()
