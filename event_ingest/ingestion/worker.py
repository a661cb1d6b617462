"""
Ingestion worker pool.

Fire-and-forget task queue: ``enqueue`` returns immediately and a fixed
number of asyncio workers process tasks in the background, each bounded by
a per-task timeout. Delivery is at-least-once (dead letters can be
requeued); redelivery is safe because events are upserted by external_id.

Tasks are independent: there is no ordering between payloads and no
cross-task locking. Extraction failures, persistence failures and timeouts
are kept as dead letters; rejected events are only logged since
redelivering them cannot succeed.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from event_ingest.ingestion.factory import TransformerDispatcher
from event_ingest.ingestion.transformers.base_transformer import (
    IngestionState,
    TransformResult,
)
from event_ingest.monitoring.logging import with_context

logger = logging.getLogger(__name__)

REDELIVERABLE_STATES = frozenset(
    {IngestionState.EXTRACTION_FAILED, IngestionState.PERSIST_FAILED}
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionTask:
    """One raw scraped payload waiting to be processed."""

    site_key: str
    raw_event: Dict[str, Any]
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    attempt: int = 1
    enqueued_at: datetime = field(default_factory=_utc_now)


@dataclass
class DeadLetter:
    """A task that ended in a redeliverable failure."""

    task: IngestionTask
    reason: str
    state: Optional[IngestionState] = None
    error: Optional[BaseException] = None
    failed_at: datetime = field(default_factory=_utc_now)


@dataclass
class PoolStats:
    """Counters across all processed tasks."""

    tasks: int = 0
    upserted: int = 0
    rejected: int = 0
    extraction_failed: int = 0
    persist_failed: int = 0
    timed_out: int = 0
    unsupported: int = 0

    def record(self, result: TransformResult) -> None:
        self.upserted += result.count(IngestionState.UPSERTED)
        self.rejected += result.count(IngestionState.REJECTED)
        self.extraction_failed += result.count(IngestionState.EXTRACTION_FAILED)
        self.persist_failed += result.count(IngestionState.PERSIST_FAILED)

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class IngestionWorkerPool:
    """
    Background workers draining an asyncio.Queue of IngestionTasks.

    Usage:
        pool = IngestionWorkerPool(dispatcher, concurrency=4)
        await pool.start()
        pool.enqueue("fabcafe", raw_event)
        await pool.join()
        await pool.stop()
    """

    def __init__(
        self,
        dispatcher: TransformerDispatcher,
        concurrency: int = 4,
        task_timeout_s: float = 300.0,
        on_result: Optional[Callable[[IngestionTask, TransformResult], None]] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.dispatcher = dispatcher
        self.concurrency = concurrency
        self.task_timeout_s = task_timeout_s
        self.on_result = on_result

        self.queue: asyncio.Queue = asyncio.Queue()
        self.dead_letters: List[DeadLetter] = []
        self.stats = PoolStats()
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"ingest-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} ingestion workers")

    async def join(self) -> None:
        """Wait until every enqueued task has been processed."""
        await self.queue.join()

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Stopped ingestion workers")

    async def run_until_idle(self) -> PoolStats:
        """Start workers, drain the queue, stop workers."""
        await self.start()
        try:
            await self.join()
        finally:
            await self.stop()
        return self.stats

    # ========================================================================
    # QUEUE
    # ========================================================================

    def enqueue(self, site_key: str, raw_event: Dict[str, Any]) -> IngestionTask:
        """Queue one payload and return immediately."""
        task = IngestionTask(site_key=site_key, raw_event=dict(raw_event))
        self.queue.put_nowait(task)
        logger.debug(f"Enqueued task {task.task_id} for {site_key}")
        return task

    def requeue_dead_letters(self) -> int:
        """Redeliver every dead letter; returns the number requeued."""
        letters, self.dead_letters = self.dead_letters, []
        for letter in letters:
            task = letter.task
            self.queue.put_nowait(
                IngestionTask(
                    site_key=task.site_key,
                    raw_event=task.raw_event,
                    task_id=task.task_id,
                    attempt=task.attempt + 1,
                )
            )
        if letters:
            logger.info(f"Requeued {len(letters)} dead letter(s)")
        return len(letters)

    # ========================================================================
    # WORKERS
    # ========================================================================

    async def _worker(self, n: int) -> None:
        while True:
            task = await self.queue.get()
            try:
                await self._run_task(task)
            finally:
                self.queue.task_done()

    async def _run_task(self, task: IngestionTask) -> Optional[TransformResult]:
        log = with_context(logger, site=task.site_key, task_id=task.task_id)
        self.stats.tasks += 1

        transformer = self.dispatcher.resolve(task.site_key)
        if transformer is None:
            self.stats.unsupported += 1
            log.error(f"Unsupported site: {task.site_key}; task dropped")
            return None

        try:
            result = await asyncio.wait_for(
                transformer.process(task.raw_event, task_id=task.task_id),
                timeout=self.task_timeout_s,
            )
        except asyncio.TimeoutError as e:
            self.stats.timed_out += 1
            log.error(f"Task timed out after {self.task_timeout_s}s (attempt {task.attempt})")
            self.dead_letters.append(
                DeadLetter(task=task, reason=f"timeout after {self.task_timeout_s}s", error=e)
            )
            return None
        except Exception as e:
            log.error(f"Task crashed: {e}", exc_info=True)
            self.dead_letters.append(DeadLetter(task=task, reason="crashed", error=e))
            return None

        self.stats.record(result)
        redeliverable = [o for o in result.failed if o.state in REDELIVERABLE_STATES]
        if redeliverable:
            first = redeliverable[0]
            self.dead_letters.append(
                DeadLetter(
                    task=task,
                    reason=f"{len(redeliverable)} event(s) failed: {first.error}",
                    state=first.state,
                    error=first.error,
                )
            )
            log.warning(f"Task dead-lettered ({first.state.value}): {first.error}")
        else:
            log.info(
                f"Task done: {len(result.upserted)} upserted, "
                f"{result.count(IngestionState.REJECTED)} rejected"
            )

        if self.on_result is not None:
            try:
                self.on_result(task, result)
            except Exception as e:
                log.error(f"on_result callback failed: {e}", exc_info=True)
        return result
