"""
Transformer for sites whose payload is free text.

The raw payload is turned into a prompt, sent to the text extraction
service, and every event in the ``{"events": [...]}`` answer becomes a
candidate.
"""

import logging
from typing import Any, Dict, List, Mapping

from event_ingest.configs.config import SiteConfig
from event_ingest.ingestion.errors import ExtractionFailure
from event_ingest.ingestion.extraction.llm_client import TextExtractionClient
from event_ingest.ingestion.extraction.prompts import build_extraction_prompt
from event_ingest.ingestion.normalization.field_normalizer import null_if_empty
from event_ingest.ingestion.persist import EventUpsertEngine
from event_ingest.ingestion.transformers.base_transformer import TransformerStrategy

logger = logging.getLogger(__name__)


class LLMTransformer(TransformerStrategy):
    """Delegates field extraction to a TextExtractionClient."""

    strategy_name = "llm"

    def __init__(
        self,
        site: SiteConfig,
        engine: EventUpsertEngine,
        extraction_client: TextExtractionClient,
    ):
        super().__init__(site, engine)
        self.extraction_client = extraction_client

    @property
    def uses_extraction(self) -> bool:
        return True

    async def extract_events(self, raw_event: Mapping[str, Any]) -> List[Dict[str, Any]]:
        prompt = build_extraction_prompt(dict(raw_event), self.site)
        payload = await self.extraction_client.extract_or_raise(
            prompt, max_tokens=self.site.max_tokens
        )

        events = payload.get("events")
        if events is None and "title" in payload:
            # single-event answer without the envelope
            events = [payload]
        if not isinstance(events, list):
            raise ExtractionFailure("Extraction response has no 'events' list")

        candidates = [dict(e) for e in events if isinstance(e, Mapping)]
        if not candidates:
            raise ExtractionFailure("Extraction response contains no events")

        for candidate in candidates:
            self._carry_raw_fields(raw_event, candidate)
        return candidates

    def _carry_raw_fields(self, raw_event: Mapping[str, Any], candidate: Dict[str, Any]) -> None:
        """Copy scraped values the site trusts more than the extraction."""
        for name in self.site.carry_fields:
            value = null_if_empty(raw_event.get(name))
            if value is not None:
                candidate[name] = value
