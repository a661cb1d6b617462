"""
Base Transformer Architecture.

A TransformerStrategy turns one raw scraped payload from a venue site into
zero or more persisted events. Every site shares the same flow; only the
way candidate events are obtained differs (direct mapping or LLM
extraction), and everything else comes from SiteConfig:

    Received -> IdComputed -> [ExtractionRequested -> ExtractionSucceeded |
    ExtractionFailed] -> Normalized -> Validated | Rejected ->
    Upserted | PersistFailed

``process`` never raises: each event ends in a terminal state recorded in
the returned TransformResult.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from event_ingest.configs.config import SiteConfig
from event_ingest.ingestion.errors import (
    ExtractionFailure,
    IngestionError,
    InputValidationError,
    UpstreamError,
)
from event_ingest.ingestion.normalization.external_id import ExternalIdStrategy
from event_ingest.ingestion.normalization.field_normalizer import FieldNormalizer
from event_ingest.ingestion.persist import EventUpsertEngine, UpsertStatus
from event_ingest.monitoring.logging import ContextAdapter, with_context
from event_ingest.schemas.event import PersistedEventRef

logger = logging.getLogger(__name__)


class IngestionState(str, Enum):
    """Processing state of one ingested item."""

    RECEIVED = "received"
    ID_COMPUTED = "id_computed"
    EXTRACTION_REQUESTED = "extraction_requested"
    EXTRACTION_SUCCEEDED = "extraction_succeeded"
    EXTRACTION_FAILED = "extraction_failed"
    NORMALIZED = "normalized"
    VALIDATED = "validated"
    REJECTED = "rejected"
    UPSERTED = "upserted"
    PERSIST_FAILED = "persist_failed"


TERMINAL_FAILURES = frozenset(
    {
        IngestionState.EXTRACTION_FAILED,
        IngestionState.REJECTED,
        IngestionState.PERSIST_FAILED,
    }
)

_UPSERT_STATES = {
    UpsertStatus.UPSERTED: IngestionState.UPSERTED,
    UpsertStatus.REJECTED: IngestionState.REJECTED,
    UpsertStatus.PERSIST_FAILED: IngestionState.PERSIST_FAILED,
}


@dataclass
class EventOutcome:
    """Trace of one candidate event through the state machine."""

    history: List[IngestionState] = field(
        default_factory=lambda: [IngestionState.RECEIVED]
    )
    external_id: Optional[str] = None
    title: Optional[str] = None
    ref: Optional[PersistedEventRef] = None
    error: Optional[IngestionError] = None

    @property
    def state(self) -> IngestionState:
        return self.history[-1]

    def advance(self, state: IngestionState) -> None:
        self.history.append(state)

    def fail(self, state: IngestionState, error: IngestionError) -> "EventOutcome":
        self.advance(state)
        self.error = error
        return self


@dataclass
class TransformResult:
    """Result of processing one raw payload."""

    site_key: str
    outcomes: List[EventOutcome] = field(default_factory=list)

    @property
    def upserted(self) -> List[EventOutcome]:
        return [o for o in self.outcomes if o.state == IngestionState.UPSERTED]

    @property
    def failed(self) -> List[EventOutcome]:
        return [o for o in self.outcomes if o.state in TERMINAL_FAILURES]

    @property
    def ok(self) -> bool:
        return bool(self.outcomes) and not self.failed

    def count(self, state: IngestionState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)


class TransformerStrategy(ABC):
    """
    Abstract per-site transformer.

    Subclasses implement ``extract_events``; id derivation, normalization,
    validation and the upsert are shared.
    """

    strategy_name: str = "base"

    def __init__(self, site: SiteConfig, engine: EventUpsertEngine):
        self.site = site
        self.engine = engine
        self.id_strategy = ExternalIdStrategy.for_site(site)
        self.normalizer = FieldNormalizer(site)

    @property
    def site_key(self) -> str:
        return self.site.key

    @abstractmethod
    async def extract_events(self, raw_event: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """
        Return candidate events (raw field names) for one scraped payload.

        Raises:
            ExtractionFailure: if no candidates could be obtained.
        """
        ...

    @property
    def uses_extraction(self) -> bool:
        return False

    # ========================================================================
    # PROCESSING
    # ========================================================================

    async def process(
        self, raw_event: Mapping[str, Any], task_id: Optional[str] = None
    ) -> TransformResult:
        """Run one raw payload through the whole pipeline."""
        log = with_context(logger, site=self.site_key, task_id=task_id)
        result = TransformResult(site_key=self.site_key)
        root = EventOutcome(title=raw_event.get("title"))
        log.info(f"Received event data: '{root.title}'", extra={"stage": "received"})

        raw_id: Optional[str] = None
        if self.site.id_stage == "raw":
            raw_id = self.id_strategy.compute(raw_event)
            root.external_id = raw_id
            root.advance(IngestionState.ID_COMPUTED)

        try:
            if self.uses_extraction:
                root.advance(IngestionState.EXTRACTION_REQUESTED)
            candidates = await self.extract_events(raw_event)
        except ExtractionFailure as e:
            log.error(
                f"Extraction failed ({type(e).__name__}): {e}",
                extra={"stage": "extraction"},
            )
            result.outcomes.append(root.fail(IngestionState.EXTRACTION_FAILED, e))
            return result
        except Exception as e:
            log.error(
                f"Unexpected extraction error: {e}",
                exc_info=True,
                extra={"stage": "extraction"},
            )
            result.outcomes.append(
                root.fail(IngestionState.EXTRACTION_FAILED, UpstreamError(str(e)))
            )
            return result

        if self.uses_extraction:
            root.advance(IngestionState.EXTRACTION_SUCCEEDED)
            log.info(
                f"Extraction returned {len(candidates)} event(s)",
                extra={"stage": "extraction"},
            )

        # A raw-stage id names one occurrence; several extracted events each get their own
        shared_id = raw_id if len(candidates) == 1 else None

        for candidate in candidates:
            outcome = EventOutcome(
                history=list(root.history), title=candidate.get("title")
            )
            await self._finish(candidate, outcome, shared_id, log)
            result.outcomes.append(outcome)

        return result

    async def _finish(
        self,
        candidate: Dict[str, Any],
        outcome: EventOutcome,
        shared_id: Optional[str],
        log: ContextAdapter,
    ) -> None:
        candidate = dict(candidate)
        if shared_id is not None:
            candidate["external_id"] = shared_id
        else:
            candidate["external_id"] = self.id_strategy.compute(candidate)
            if outcome.state != IngestionState.ID_COMPUTED:
                outcome.advance(IngestionState.ID_COMPUTED)
        outcome.external_id = candidate["external_id"]
        log = log.bind(external_id=outcome.external_id)

        try:
            fields = self.normalizer.normalize(candidate)
        except (AttributeError, TypeError, ValueError, ArithmeticError) as e:
            log.error(f"Could not normalize event: {e}", extra={"stage": "normalize"})
            outcome.fail(
                IngestionState.REJECTED,
                InputValidationError([f"normalization: {e}"], values=candidate),
            )
            return
        outcome.advance(IngestionState.NORMALIZED)

        upsert = await asyncio.to_thread(self.engine.upsert, fields)
        if upsert.status != UpsertStatus.REJECTED:
            outcome.advance(IngestionState.VALIDATED)
        outcome.advance(_UPSERT_STATES[upsert.status])
        outcome.ref = upsert.ref
        outcome.error = upsert.error
