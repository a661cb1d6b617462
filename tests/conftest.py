"""
Shared pytest fixtures for the venue event ingestion test suite.

Provides factories for site configs, raw scraped events and a scripted
LLM client, plus an in-memory store wired into an upsert engine.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

import pytest

from event_ingest.configs.config import SiteConfig
from event_ingest.ingestion.errors import ExtractionFailure
from event_ingest.ingestion.extraction.llm_client import (
    BaseLLMClient,
    TextExtractionClient,
)
from event_ingest.ingestion.persist import EventUpsertEngine
from event_ingest.monitoring.logging import PACKAGE_LOGGER
from event_ingest.storage.memory_store import InMemoryEventStore


class ScriptedLLMClient(BaseLLMClient):
    """
    BaseLLMClient returning canned responses in order.

    A response may be a string (returned as completion text), a dict
    (serialized to JSON inside some prose) or an exception (raised).
    """

    provider = "scripted"

    def __init__(self, responses: List[Union[str, dict, Exception]]):
        self.responses = list(responses)
        self.prompts: List[str] = []
        self.max_tokens: List[Optional[int]] = []

    @property
    def is_available(self) -> bool:
        return True

    async def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        if not self.responses:
            raise ExtractionFailure("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return f"Here is the data:\n{json.dumps(response)}\nHope this helps."
        return response


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_site():
    """
    Return a function that creates SiteConfig objects with sensible defaults.

    Example:
        site = make_site(key="fabcafe", strategy="direct", free_default=True)
    """

    def _make_site(key: str = "test_site", **kwargs) -> SiteConfig:
        return SiteConfig.from_dict(key, kwargs)

    return _make_site


@pytest.fixture
def create_raw_event():
    """
    Return a function that creates raw scraped event dicts.

    All defaults can be overridden via keyword arguments; pass None to drop
    a field.
    """

    def _create_raw_event(**kwargs) -> Dict[str, Any]:
        event = {
            "title": "Jazz Night",
            "date_start": "2024-05-01",
            "date_end": "2024-05-01",
            "venue": "Hall X",
            "event_link": "https://example.com/events/jazz-night",
            "image_url": "https://example.com/img/jazz.jpg",
            "schedule": [
                {"date": "2024-05-01", "time_start": "18:00", "time_end": "21:00"}
            ],
            "prices": [{"price_tier": "General", "amount": "2000"}],
            "categories": ["Music"],
            "tags": ["Jazz"],
        }
        event.update(kwargs)
        return {k: v for k, v in event.items() if v is not None}

    return _create_raw_event


@pytest.fixture
def store():
    """Fresh in-memory event store."""
    return InMemoryEventStore()


@pytest.fixture
def engine(store):
    """Upsert engine writing to the in-memory store."""
    return EventUpsertEngine(store)


@pytest.fixture
def scripted_extraction():
    """Return a function building a TextExtractionClient over scripted responses."""

    def _scripted(*responses) -> TextExtractionClient:
        return TextExtractionClient(ScriptedLLMClient(list(responses)))

    return _scripted
