from event_ingest.ingestion.extraction.json_extractor import ResponseJsonExtractor
from event_ingest.ingestion.extraction.llm_client import (
    BaseLLMClient,
    OpenAIChatClient,
    TextExtractionClient,
)

__all__ = [
    "BaseLLMClient",
    "OpenAIChatClient",
    "ResponseJsonExtractor",
    "TextExtractionClient",
]
