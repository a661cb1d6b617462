# Persistence layer for ingested events
"""
Event Upsert Engine.

Handles the idempotent upsert of CanonicalEvent objects into the relational
store: find-or-create by external_id, update scalars in place, then
reconcile each child collection by its natural key.

Reconciliation is additive: rows and associations from earlier ingests of
the same event are never deleted.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from event_ingest.ingestion.errors import (
    IngestionError,
    InputValidationError,
    PersistenceError,
)
from event_ingest.schemas.event import CanonicalEvent, PersistedEventRef
from event_ingest.storage.base_store import EventStore

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "external_id",
    "title",
    "organization",
    "description",
    "date_start",
    "date_end",
    "program",
    "sold_out",
    "free",
)


class UpsertStatus(str, Enum):
    """Terminal outcome of one upsert."""

    UPSERTED = "upserted"
    REJECTED = "rejected"
    PERSIST_FAILED = "persist_failed"


@dataclass
class UpsertResult:
    """Result of EventUpsertEngine.upsert (never raised, always returned)."""

    status: UpsertStatus
    ref: Optional[PersistedEventRef] = None
    error: Optional[IngestionError] = None

    @property
    def ok(self) -> bool:
        return self.status == UpsertStatus.UPSERTED


def _validation_messages(error: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}"
        for err in error.errors()
    ]


class EventUpsertEngine:
    """
    Persists canonical events through an EventStore.

    Each event is written in its own transaction. If one event fails it is
    rolled back and logged, and the caller continues with the rest of the
    batch.
    """

    def __init__(self, store: EventStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, event: Union[CanonicalEvent, Mapping[str, Any]]) -> CanonicalEvent:
        """
        Check required fields: title, date_start, date_end and external_id.

        Raises:
            InputValidationError: listing every problem found.
        """
        data = event.model_dump() if isinstance(event, CanonicalEvent) else dict(event)
        try:
            return CanonicalEvent.model_validate(data)
        except ValidationError as e:
            raise InputValidationError(_validation_messages(e), values=data) from e

    def upsert(self, event: Union[CanonicalEvent, Mapping[str, Any]]) -> UpsertResult:
        """Validate and persist one event. Failures are logged and returned."""
        try:
            canonical = self.validate(event)
        except InputValidationError as e:
            logger.error(
                f"Rejected invalid event: {e}",
                extra={"payload": {"errors": e.errors, "values": e.values}},
            )
            return UpsertResult(UpsertStatus.REJECTED, error=e)

        try:
            with self.store.transaction():
                ref = self._persist_single_event(canonical)
        except PersistenceError as e:
            logger.error(
                f"Failed to persist event '{canonical.title}': {e}",
                extra={
                    "external_id": canonical.external_id,
                    "payload": {
                        "detail": e.detail,
                        "values": canonical.model_dump(mode="json"),
                    },
                },
            )
            return UpsertResult(UpsertStatus.PERSIST_FAILED, error=e)
        except Exception as e:
            logger.error(
                f"Failed to persist event '{canonical.title}': {e}",
                exc_info=True,
                extra={
                    "external_id": canonical.external_id,
                    "payload": {"values": canonical.model_dump(mode="json")},
                },
            )
            error = PersistenceError(
                str(e), values=canonical.model_dump(mode="json"), detail=repr(e)
            )
            return UpsertResult(UpsertStatus.PERSIST_FAILED, error=error)

        action = "Created" if ref.created else "Updated"
        logger.info(
            f"{action} event '{canonical.title}' (id={ref.event_id})",
            extra={"external_id": canonical.external_id},
        )
        return UpsertResult(UpsertStatus.UPSERTED, ref=ref)

    def upsert_batch(
        self, events: Iterable[Union[CanonicalEvent, Mapping[str, Any]]]
    ) -> List[UpsertResult]:
        """Upsert events one by one; a failing event never stops its siblings."""
        return [self.upsert(event) for event in events]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _persist_single_event(self, event: CanonicalEvent) -> PersistedEventRef:
        # 1. Venue (shared row)
        venue_id = self._persist_venue(event)

        # 2. Event (create or update by external_id)
        event_id, created = self._persist_event(event, venue_id)

        # 3. Schedules
        self._persist_schedules(event, event_id)

        # 4. Categories and tags
        self._persist_taxonomy(event, event_id)

        # 5. Images
        self._persist_images(event, event_id)

        # 6. Prices
        self._persist_prices(event, event_id)

        # 7. Event link
        self._persist_link(event, event_id)

        return PersistedEventRef(
            event_id=event_id,
            external_id=event.external_id,
            created=created,
            venue_id=venue_id,
        )

    # ------------------------------------------------------------------
    # 1. Venue
    # ------------------------------------------------------------------

    def _persist_venue(self, event: CanonicalEvent) -> Optional[int]:
        if not event.venue:
            logger.info(
                f"Event '{event.title}' has no venue; storing without venue",
                extra={"external_id": event.external_id},
            )
            return None
        return self.store.find_or_create_venue(event.venue)

    # ------------------------------------------------------------------
    # 2. Event
    # ------------------------------------------------------------------

    def _persist_event(self, event: CanonicalEvent, venue_id: Optional[int]) -> tuple[int, bool]:
        values: Dict[str, Any] = {f: getattr(event, f) for f in SCALAR_FIELDS}
        values["venue_id"] = venue_id

        existing_id = self.store.find_event_id(event.external_id)
        if existing_id is not None:
            self.store.update_event(existing_id, values)
            return existing_id, False

        return self.store.create_event(values), True

    # ------------------------------------------------------------------
    # 3. Schedules
    # ------------------------------------------------------------------

    def _persist_schedules(self, event: CanonicalEvent, event_id: int) -> None:
        for entry in event.schedule:
            self.store.upsert_schedule(event_id, entry.model_dump())

    # ------------------------------------------------------------------
    # 4. Categories and tags
    # ------------------------------------------------------------------

    def _persist_taxonomy(self, event: CanonicalEvent, event_id: int) -> None:
        for name in event.categories:
            category_id = self.store.find_or_create_category(name)
            self.store.attach_category(event_id, category_id)

        for name in event.tags:
            tag_id = self.store.find_or_create_tag(name)
            self.store.attach_tag(event_id, tag_id)

    # ------------------------------------------------------------------
    # 5. Images
    # ------------------------------------------------------------------

    def _persist_images(self, event: CanonicalEvent, event_id: int) -> None:
        featured_seen = False
        for image in event.images:
            entry = image.model_dump()
            if entry["is_featured"]:
                if featured_seen:
                    logger.warning(
                        f"Event '{event.title}' has several featured images; "
                        f"keeping the first",
                        extra={"external_id": event.external_id},
                    )
                    entry["is_featured"] = False
                featured_seen = True
            self.store.upsert_image(event_id, entry)

    # ------------------------------------------------------------------
    # 6. Prices
    # ------------------------------------------------------------------

    def _persist_prices(self, event: CanonicalEvent, event_id: int) -> None:
        for price in event.prices:
            self.store.upsert_price(event_id, price.model_dump())

    # ------------------------------------------------------------------
    # 7. Event link
    # ------------------------------------------------------------------

    def _persist_link(self, event: CanonicalEvent, event_id: int) -> None:
        if not event.event_link:
            logger.info(
                f"No event_link for '{event.title}', skipping link upsert",
                extra={"external_id": event.external_id},
            )
            return
        self.store.upsert_event_link(event_id, event.event_link, event.link_type)
