"""
Relational store port.

The upsert engine only talks to this interface. Each child entity has a
natural key and an upsert-by-key operation; taxonomy rows (venues,
categories, tags) are shared between events and must be found-or-created
atomically, since two workers can race on the same name.

Adapters raise PersistenceError for any rejected write.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Dict, Optional


class EventStore(ABC):
    """Abstract event store."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Context manager: commit on success, roll back on any exception."""
        ...

    # ------------------------------------------------------------------
    # Shared taxonomy rows
    # ------------------------------------------------------------------

    @abstractmethod
    def find_or_create_venue(self, name: str) -> int: ...

    @abstractmethod
    def find_or_create_category(self, name: str) -> int: ...

    @abstractmethod
    def find_or_create_tag(self, name: str) -> int: ...

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @abstractmethod
    def find_event_id(self, external_id: str) -> Optional[int]: ...

    @abstractmethod
    def create_event(self, values: Dict[str, Any]) -> int:
        """Insert a new event row; values include external_id."""
        ...

    @abstractmethod
    def update_event(self, event_id: int, values: Dict[str, Any]) -> None: ...

    # ------------------------------------------------------------------
    # Child collections (upsert by natural key)
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_schedule(self, event_id: int, entry: Dict[str, Any]) -> None:
        """Keyed by (event_id, date)."""
        ...

    @abstractmethod
    def upsert_price(self, event_id: int, entry: Dict[str, Any]) -> None:
        """Keyed by (event_id, price_tier)."""
        ...

    @abstractmethod
    def upsert_image(self, event_id: int, entry: Dict[str, Any]) -> None:
        """Keyed by (event_id, image_url)."""
        ...

    @abstractmethod
    def upsert_event_link(self, event_id: int, url: str, link_type: str) -> None:
        """Keyed by (event_id, url)."""
        ...

    @abstractmethod
    def attach_category(self, event_id: int, category_id: int) -> None:
        """Add the association if missing; never removes existing ones."""
        ...

    @abstractmethod
    def attach_tag(self, event_id: int, tag_id: int) -> None:
        """Add the association if missing; never removes existing ones."""
        ...

    def close(self) -> None:
        return None
