"""
Field Normalizer.

Turns a raw scraped (or LLM-extracted) event mapping into the field names
and shapes of CanonicalEvent, applying the site's defaults:

- free/paid inference from the price collection
- empty string (and "TBA" for times) to None
- placeholder primary image, venue defaulting to the organization
- relative image URLs resolved against the event link
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urljoin, urlparse

from event_ingest.configs.config import SiteConfig
from event_ingest.ingestion.normalization.currency import CurrencyParser
from event_ingest.schemas.event import (
    ADDITIONAL_IMAGE_ALT_TEXT,
    DEFAULT_CURRENCY,
    DEFAULT_SCHEDULE_STATUS,
    PRIMARY_IMAGE_ALT_TEXT,
)

logger = logging.getLogger(__name__)

TIME_SENTINELS = ("tba", "tbd", "未定")

DEFAULT_PRICE_TIER = "General"

PRICE_TIER_LABELS = {
    "adults": "Adults",
    "adult": "Adults",
    "general": "General",
    "club members": "Club Members",
    "under 22": "Under 22",
    "students": "Students",
    "student": "Students",
}

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y年%m月%d日")


# ============================================================================
# SCALAR HELPERS
# ============================================================================


def null_if_empty(value: Any) -> Any:
    """Empty or whitespace-only strings become None; other values pass through."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def null_if_tba(value: Any) -> Optional[str]:
    """Normalize a time field: "", "TBA" (any case) and None become None."""
    value = null_if_empty(value)
    if value is None:
        return None
    value = str(value)
    if value.lower() in TIME_SENTINELS:
        return None
    return value


def normalize_date(value: Any) -> Any:
    """
    Parse the date formats seen on venue sites.

    Unparseable values are returned unchanged so that validation rejects
    them with a precise message.
    """
    value = null_if_empty(value)
    if value is None or isinstance(value, date):
        return value.date() if isinstance(value, datetime) else value

    text = str(value)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    # ISO datetimes ("2024-05-01T19:00:00")
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return value


def clean_price_tier(tier: Any) -> str:
    """Map common tier labels to one spelling; unknown labels are kept trimmed."""
    tier = null_if_empty(tier)
    if not isinstance(tier, str):
        return DEFAULT_PRICE_TIER
    return PRICE_TIER_LABELS.get(tier.lower(), tier)


def infer_free(
    prices: Iterable[Mapping[str, Any]],
    explicit: Optional[bool] = None,
    default: bool = False,
) -> bool:
    """
    Decide whether an event is free.

    An explicit flag wins. Otherwise, with prices present, the event is free
    only if no tier has an amount above zero. Without prices the site default
    applies.
    """
    if explicit is not None:
        return explicit

    prices = list(prices)
    if not prices:
        return default

    for price in prices:
        amount = price.get("amount")
        if amount is not None and Decimal(amount) > 0:
            return False
    return True


def is_absolute_url(url: str) -> bool:
    return bool(urlparse(url).scheme)


def resolve_url(url: Optional[str], base: Optional[str]) -> Optional[str]:
    """Resolve a relative URL ("../img/a.jpg", "/a.jpg", "a.jpg") against base."""
    url = null_if_empty(url)
    if url is None or is_absolute_url(url) or not base:
        return url
    return urljoin(base, url)


def _coerce_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "yes", "1"):
        return True
    if text in ("false", "no", "0"):
        return False
    return None


def _as_name_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    names = []
    for item in value:
        if isinstance(item, Mapping):
            item = item.get("name")
        item = null_if_empty(item)
        if item is not None:
            names.append(str(item))
    return names


def _venue_name(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("name")
    return null_if_empty(value)


# ============================================================================
# FIELD NORMALIZER
# ============================================================================


class FieldNormalizer:
    """Per-site normalization driven by SiteConfig."""

    def __init__(self, site: SiteConfig):
        self.site = site

    def normalize(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Build the CanonicalEvent field mapping for one event.

        The result is not validated here; the upsert engine validates it.
        """
        site = self.site
        data = dict(raw)
        for key, default in site.defaults.items():
            if null_if_empty(data.get(key)) is None:
                data[key] = default

        organization = site.organization or null_if_empty(data.get("organization"))

        event_link = site.fixed_event_link or null_if_empty(data.get("event_link"))
        if event_link is None:
            logger.warning(
                f"Event '{data.get('title')}' has no event_link; the link will be skipped"
            )

        venue = _venue_name(data.get("venue"))
        if venue is None and site.default_venue_to_organization and organization:
            venue = organization

        prices = self._normalize_prices(data.get("prices") or [])

        return {
            "external_id": data.get("external_id"),
            "title": null_if_empty(data.get("title")),
            "organization": organization,
            "description": null_if_empty(data.get("description")),
            "date_start": normalize_date(data.get("date_start")),
            "date_end": normalize_date(data.get("date_end")),
            "venue": venue,
            "program": null_if_empty(data.get("program")),
            "sold_out": bool(_coerce_bool(data.get("sold_out"))),
            "free": infer_free(
                prices,
                explicit=_coerce_bool(data.get("free")),
                default=site.free_default,
            ),
            "event_link": event_link,
            "link_type": site.link_type,
            "schedule": self._normalize_schedule(
                data.get("schedule") or data.get("schedules") or []
            ),
            "categories": _as_name_list(data.get("categories")),
            "tags": _as_name_list(data.get("tags")),
            "prices": prices,
            "images": self._normalize_images(data, event_link),
        }

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def _normalize_schedule(self, entries: Iterable[Mapping[str, Any]]) -> List[dict]:
        schedule = []
        for entry in entries:
            entry_date = normalize_date(entry.get("date"))
            if entry_date is None:
                logger.warning(f"Dropping schedule entry without date: {dict(entry)}")
                continue
            schedule.append(
                {
                    "date": entry_date,
                    "time_start": null_if_tba(entry.get("time_start")),
                    "time_end": null_if_tba(entry.get("time_end")),
                    "special_notes": null_if_empty(entry.get("special_notes")),
                    "status": null_if_empty(entry.get("status"))
                    or DEFAULT_SCHEDULE_STATUS,
                }
            )
        return schedule

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def _normalize_prices(self, entries: Iterable[Mapping[str, Any]]) -> List[dict]:
        prices = []
        for entry in entries:
            raw_amount = null_if_empty(entry.get("amount"))
            amount = CurrencyParser.parse_amount(raw_amount)
            currency = null_if_empty(entry.get("currency"))
            if currency is None and isinstance(raw_amount, str):
                currency = CurrencyParser.detect_currency(raw_amount) or None
            prices.append(
                {
                    "price_tier": clean_price_tier(entry.get("price_tier")),
                    "amount": amount,
                    "currency": currency or DEFAULT_CURRENCY,
                    "discount_info": null_if_empty(entry.get("discount_info")),
                }
            )
        return prices

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _normalize_images(
        self, data: Mapping[str, Any], event_link: Optional[str]
    ) -> List[dict]:
        base = event_link or self.site.image_base_url

        primary = resolve_url(data.get("image_url"), base)
        if primary is None and self.site.placeholder_image_url:
            logger.warning(
                f"Event '{data.get('title')}' has no image; using placeholder"
            )
            primary = self.site.placeholder_image_url

        images: List[dict] = []
        seen = set()
        if primary:
            images.append(
                {
                    "image_url": primary,
                    "alt_text": PRIMARY_IMAGE_ALT_TEXT,
                    "is_featured": True,
                }
            )
            seen.add(primary)

        for extra in data.get("images") or []:
            if isinstance(extra, str):
                extra = {"image_url": extra}
            url = resolve_url(extra.get("image_url"), base)
            if url is None or url in seen:
                continue
            seen.add(url)
            images.append(
                {
                    "image_url": url,
                    "alt_text": null_if_empty(extra.get("alt_text"))
                    or ADDITIONAL_IMAGE_ALT_TEXT,
                    "is_featured": bool(_coerce_bool(extra.get("is_featured"))),
                }
            )
        return images
