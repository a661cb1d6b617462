"""
Ingestion Orchestrator.

Inbound boundary of the service: accepts (site_key, events) from a scraper,
checks the site is supported, enqueues one task per event and returns at
once. Processing happens later on the worker pool, so failures are only
visible in logs, stats and dead letters.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from event_ingest.configs.settings import Settings, get_settings
from event_ingest.ingestion.extraction.llm_client import TextExtractionClient
from event_ingest.ingestion.factory import TransformerDispatcher
from event_ingest.ingestion.persist import EventUpsertEngine
from event_ingest.ingestion.transformers.base_transformer import TransformResult
from event_ingest.ingestion.worker import IngestionWorkerPool
from event_ingest.storage.base_store import EventStore
from event_ingest.storage.memory_store import InMemoryEventStore

logger = logging.getLogger(__name__)


@dataclass
class SubmissionReceipt:
    """Immediate answer to a submission; says nothing about processing outcome."""

    site_key: str
    accepted: bool
    task_ids: List[str] = field(default_factory=list)
    skipped: int = 0
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "site": self.site_key,
            "accepted": self.accepted,
            "dispatched": len(self.task_ids),
            "skipped": self.skipped,
            "error": self.error,
        }


def build_store(settings: Settings) -> EventStore:
    """PostgreSQL when DATABASE_URL is set, in-memory otherwise."""
    if settings.DATABASE_URL:
        from event_ingest.storage.postgres_store import PostgresEventStore

        return PostgresEventStore.from_settings(
            settings, max_connections=settings.WORKER_CONCURRENCY + 1
        )
    logger.warning("DATABASE_URL not set; using in-memory event store")
    return InMemoryEventStore()


class IngestionOrchestrator:
    """
    Coordinates dispatcher, worker pool and store.

    Responsibilities:
    - Validate inbound submissions (site supported, events is a list)
    - Enqueue one fire-and-forget task per raw event
    - Offer a direct (queue-less) processing path for one event
    """

    def __init__(self, dispatcher: TransformerDispatcher, pool: IngestionWorkerPool):
        self.dispatcher = dispatcher
        self.pool = pool

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[EventStore] = None,
        extraction_client: Optional[TextExtractionClient] = None,
    ) -> "IngestionOrchestrator":
        settings = settings or get_settings()
        store = store or build_store(settings)
        engine = EventUpsertEngine(store)
        dispatcher = TransformerDispatcher(
            engine,
            extraction_client=extraction_client,
            config_path=settings.SITES_CONFIG_PATH,
            settings=settings,
        )
        pool = IngestionWorkerPool(
            dispatcher,
            concurrency=settings.WORKER_CONCURRENCY,
            task_timeout_s=settings.TASK_TIMEOUT_S,
        )
        return cls(dispatcher, pool)

    @property
    def store(self) -> EventStore:
        return self.dispatcher.engine.store

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        self.store.close()

    # ========================================================================
    # INBOUND
    # ========================================================================

    def submit(self, site_key: str, events: Any) -> SubmissionReceipt:
        """
        Enqueue every event of one scraper payload.

        Returns a receipt immediately; an unknown site or a non-list payload
        is refused without enqueuing anything.
        """
        site_key = (site_key or "").strip()
        if not site_key:
            logger.error("Submission without site key")
            return SubmissionReceipt(site_key, accepted=False, error="Missing site")

        if not isinstance(events, list):
            logger.error(f"Submission for {site_key}: 'events' must be a list")
            return SubmissionReceipt(
                site_key, accepted=False, error="'events' must be a list"
            )

        if self.dispatcher.resolve(site_key) is None:
            return SubmissionReceipt(
                site_key, accepted=False, error=f"Unsupported site: {site_key}"
            )

        logger.info(f"Dispatching {len(events)} event(s) for {site_key}")
        receipt = SubmissionReceipt(site_key, accepted=True)
        for raw_event in events:
            if not isinstance(raw_event, Mapping):
                logger.error(f"Skipping non-object event for {site_key}: {raw_event!r}")
                receipt.skipped += 1
                continue
            task = self.pool.enqueue(site_key, dict(raw_event))
            receipt.task_ids.append(task.task_id)
        return receipt

    def submit_payload(self, payload: Any) -> SubmissionReceipt:
        """Accept a scraper body of the form {"site": ..., "events": [...]}."""
        if not isinstance(payload, Mapping):
            return SubmissionReceipt("", accepted=False, error="Payload must be an object")
        return self.submit(payload.get("site") or "", payload.get("events"))

    async def process_now(
        self, site_key: str, raw_event: Mapping[str, Any]
    ) -> Optional[TransformResult]:
        """Process one event inline, bypassing the queue. None if unsupported."""
        transformer = self.dispatcher.resolve(site_key)
        if transformer is None:
            return None
        return await transformer.process(dict(raw_event))
