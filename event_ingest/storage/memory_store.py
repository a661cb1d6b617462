"""
In-memory event store.

Thread-safe implementation of EventStore used by tests and by the CLI's
--dry-run mode. A transaction holds the store lock and records the previous
value of every key it writes; if the block raises, those keys are restored.
"""

import copy
import itertools
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from event_ingest.ingestion.errors import PersistenceError
from event_ingest.storage.base_store import EventStore


_MISSING = object()


EVENT_COLUMNS = (
    "external_id",
    "title",
    "organization",
    "description",
    "date_start",
    "date_end",
    "venue_id",
    "program",
    "sold_out",
    "free",
)


class InMemoryEventStore(EventStore):
    """Dict-backed tables with the same natural keys as the SQL schema."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local = threading.local()
        self._ids = itertools.count(1)

        self.venues: Dict[str, int] = {}
        self.categories: Dict[str, int] = {}
        self.tags: Dict[str, int] = {}
        self.events: Dict[int, Dict[str, Any]] = {}
        self.event_ids_by_external_id: Dict[str, int] = {}
        self.schedules: Dict[Tuple[int, Any], Dict[str, Any]] = {}
        self.prices: Dict[Tuple[int, str], Dict[str, Any]] = {}
        self.images: Dict[Tuple[int, str], Dict[str, Any]] = {}
        self.links: Dict[Tuple[int, str], Dict[str, Any]] = {}
        self.event_categories: Set[Tuple[int, int]] = set()
        self.event_tags: Set[Tuple[int, int]] = set()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["InMemoryEventStore"]:
        with self._lock:
            depth = getattr(self._local, "depth", 0)
            if depth == 0:
                self._local.undo = []
            self._local.depth = depth + 1
            try:
                yield self
            except Exception:
                if depth == 0:
                    self._rollback(self._local.undo)
                raise
            finally:
                self._local.depth = depth
                if depth == 0:
                    self._local.undo = None

    def _remember(self, name: str, key: Any) -> None:
        """Log the current value of table[key] when inside a transaction."""
        undo = getattr(self._local, "undo", None)
        if undo is None:
            return
        table = getattr(self, name)
        if isinstance(table, set):
            undo.append((name, key, key in table))
        else:
            undo.append((name, key, copy.deepcopy(table.get(key, _MISSING))))

    def _rollback(self, undo: List[Tuple[str, Any, Any]]) -> None:
        for name, key, previous in reversed(undo):
            table = getattr(self, name)
            if isinstance(table, set):
                if previous:
                    table.add(key)
                else:
                    table.discard(key)
            elif previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous

    # ------------------------------------------------------------------
    # Shared taxonomy rows
    # ------------------------------------------------------------------

    def _find_or_create(self, table_name: str, name: str) -> int:
        if not name:
            raise PersistenceError("Name cannot be empty", values={"name": name})
        with self._lock:
            table = getattr(self, table_name)
            if name not in table:
                self._remember(table_name, name)
                table[name] = next(self._ids)
            return table[name]

    def find_or_create_venue(self, name: str) -> int:
        return self._find_or_create("venues", name)

    def find_or_create_category(self, name: str) -> int:
        return self._find_or_create("categories", name)

    def find_or_create_tag(self, name: str) -> int:
        return self._find_or_create("tags", name)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def find_event_id(self, external_id: str) -> Optional[int]:
        with self._lock:
            return self.event_ids_by_external_id.get(external_id)

    def create_event(self, values: Dict[str, Any]) -> int:
        external_id = values.get("external_id")
        with self._lock:
            if not external_id:
                raise PersistenceError("external_id is required", values=values)
            if external_id in self.event_ids_by_external_id:
                raise PersistenceError(
                    "Duplicate external_id",
                    values=values,
                    detail=f"events_external_id_key violated for {external_id}",
                )
            event_id = next(self._ids)
            self._remember("events", event_id)
            self._remember("event_ids_by_external_id", external_id)
            self.events[event_id] = {k: values.get(k) for k in EVENT_COLUMNS}
            self.event_ids_by_external_id[external_id] = event_id
            return event_id

    def update_event(self, event_id: int, values: Dict[str, Any]) -> None:
        with self._lock:
            if event_id not in self.events:
                raise PersistenceError(f"Event {event_id} not found", values=values)
            self._remember("events", event_id)
            row = self.events[event_id]
            row.update({k: v for k, v in values.items() if k in EVENT_COLUMNS})

    # ------------------------------------------------------------------
    # Child collections
    # ------------------------------------------------------------------

    def _require_event(self, event_id: int) -> None:
        if event_id not in self.events:
            raise PersistenceError(
                f"Event {event_id} not found", detail="foreign key violation"
            )

    def upsert_schedule(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("schedules", (event_id, entry["date"]))
            self.schedules[(event_id, entry["date"])] = dict(entry)

    def upsert_price(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("prices", (event_id, entry["price_tier"]))
            self.prices[(event_id, entry["price_tier"])] = dict(entry)

    def upsert_image(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("images", (event_id, entry["image_url"]))
            self.images[(event_id, entry["image_url"])] = dict(entry)

    def upsert_event_link(self, event_id: int, url: str, link_type: str) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("links", (event_id, url))
            self.links[(event_id, url)] = {"url": url, "link_type": link_type}

    def attach_category(self, event_id: int, category_id: int) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("event_categories", (event_id, category_id))
            self.event_categories.add((event_id, category_id))

    def attach_tag(self, event_id: int, tag_id: int) -> None:
        with self._lock:
            self._require_event(event_id)
            self._remember("event_tags", (event_id, tag_id))
            self.event_tags.add((event_id, tag_id))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def get_event(self, external_id: str) -> Optional[Dict[str, Any]]:
        event_id = self.find_event_id(external_id)
        return dict(self.events[event_id]) if event_id is not None else None

    def _names_for(self, table: Dict[str, int], links: Set[Tuple[int, int]], event_id: int) -> List[str]:
        ids = {tid for eid, tid in links if eid == event_id}
        return sorted(name for name, tid in table.items() if tid in ids)

    def categories_for(self, event_id: int) -> List[str]:
        return self._names_for(self.categories, self.event_categories, event_id)

    def tags_for(self, event_id: int) -> List[str]:
        return self._names_for(self.tags, self.event_tags, event_id)

    def children_for(self, table: Dict[Tuple[int, Any], Dict[str, Any]], event_id: int) -> List[Dict[str, Any]]:
        return [row for (eid, _), row in table.items() if eid == event_id]
