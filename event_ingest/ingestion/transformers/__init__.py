from event_ingest.ingestion.transformers.base_transformer import (
    IngestionState,
    TransformerStrategy,
    TransformResult,
)
from event_ingest.ingestion.transformers.direct import DirectTransformer
from event_ingest.ingestion.transformers.llm import LLMTransformer

__all__ = [
    "DirectTransformer",
    "IngestionState",
    "LLMTransformer",
    "TransformerStrategy",
    "TransformResult",
]
