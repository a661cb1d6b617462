"""Transformer for sites whose scraped payload is already canonical-shaped."""

from typing import Any, Dict, List, Mapping

from event_ingest.ingestion.transformers.base_transformer import TransformerStrategy


class DirectTransformer(TransformerStrategy):
    """Maps the scraped payload straight to one candidate event (no extraction call)."""

    strategy_name = "direct"

    async def extract_events(self, raw_event: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return [dict(raw_event)]
