# event_ingest/schemas/event.py
"""
Canonical Event Schema for venue event ingestion.

Every site transformer, whatever the shape of its scraped payload, produces
CanonicalEvent instances. They are built fresh per ingestion call, never
mutated concurrently, and handed once to the EventUpsertEngine.
"""

import datetime
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CURRENCY = "JPY"
DEFAULT_SCHEDULE_STATUS = "upcoming"
PRIMARY_IMAGE_ALT_TEXT = "Main Event Image"
ADDITIONAL_IMAGE_ALT_TEXT = "Additional Event Image"


# ============================================================================
# CHILD COLLECTIONS
# ============================================================================


class ScheduleEntry(BaseModel):
    """One performance date of an event, unique per (event, date)."""

    date: datetime.date
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    special_notes: Optional[str] = None
    status: str = DEFAULT_SCHEDULE_STATUS


class PriceEntry(BaseModel):
    """A price tier, unique per (event, price_tier)."""

    price_tier: str = Field(..., min_length=1)
    amount: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    discount_info: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("Price amount cannot be negative")
        return v


class ImageEntry(BaseModel):
    """An event image, unique per (event, image_url)."""

    image_url: str = Field(..., min_length=1)
    alt_text: str = ADDITIONAL_IMAGE_ALT_TEXT
    is_featured: bool = False


# ============================================================================
# CANONICAL EVENT
# ============================================================================


class CanonicalEvent(BaseModel):
    """
    Normalized event record, ready for persistence.

    `external_id` is derived by the site's ExternalIdStrategy and is the
    identity key for the upsert: at most one stored event exists per id.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    external_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    organization: Optional[str] = None
    description: Optional[str] = None

    date_start: date
    date_end: date

    venue: Optional[str] = None
    program: Optional[str] = None
    sold_out: bool = False
    free: bool = False

    event_link: Optional[str] = None
    link_type: str = "primary"

    schedule: List[ScheduleEntry] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    prices: List[PriceEntry] = Field(default_factory=list)
    images: List[ImageEntry] = Field(default_factory=list)

    @field_validator("categories", "tags")
    @classmethod
    def drop_blank_names(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for name in v:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @model_validator(mode="after")
    def validate_date_range(self) -> "CanonicalEvent":
        if self.date_start > self.date_end:
            raise ValueError(
                f"date_start ({self.date_start}) is after date_end ({self.date_end})"
            )
        return self

    @property
    def featured_image(self) -> Optional[ImageEntry]:
        return next((img for img in self.images if img.is_featured), None)


class PersistedEventRef(BaseModel):
    """Handle to a stored event returned by a successful upsert."""

    event_id: int
    external_id: str
    created: bool
    venue_id: Optional[int] = None
