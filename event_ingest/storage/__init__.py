from event_ingest.storage.base_store import EventStore
from event_ingest.storage.memory_store import InMemoryEventStore

__all__ = ["EventStore", "InMemoryEventStore"]
