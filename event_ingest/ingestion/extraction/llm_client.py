"""
Text extraction client.

Sends a prompt to an OpenAI-compatible chat completions endpoint and turns
the text answer into a structured payload. The only retried condition is
HTTP 429, with bounded exponential backoff; every other failure is soft and
surfaces as a None result to the caller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from event_ingest.configs.settings import Settings
from event_ingest.ingestion.errors import (
    ExtractionFailure,
    JsonNotFoundError,
    MalformedJsonError,
    RateLimitExhausted,
    UpstreamError,
)
from event_ingest.ingestion.extraction.json_extractor import ResponseJsonExtractor
from event_ingest.ingestion.extraction.resilience import RetryPolicy

logger = logging.getLogger(__name__)


class BaseLLMClient(ABC):
    """
    Abstract async text-generation client.

    Implementations return the raw text of the first completion choice, or
    raise an ExtractionFailure subclass.
    """

    provider: str = "base"

    @abstractmethod
    async def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        """Raw text completion."""
        ...

    @property
    def is_available(self) -> bool:
        """Returns True if the client is configured and can make calls."""
        return False

    async def aclose(self) -> None:
        return None


class OpenAIChatClient(BaseLLMClient):
    """
    OpenAI chat completions over httpx.

    Configuration is passed in at construction; nothing is read from the
    environment at call time.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 1000,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.retry_policy = retry_policy or RetryPolicy()
        self._api_key = api_key
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "OpenAIChatClient":
        api_key = (
            settings.OPENAI_API_KEY.get_secret_value()
            if settings.OPENAI_API_KEY
            else None
        )
        return cls(
            api_key=api_key,
            model_name=settings.EXTRACTION_MODEL,
            temperature=settings.EXTRACTION_TEMPERATURE,
            max_tokens=settings.EXTRACTION_MAX_TOKENS,
            base_url=settings.OPENAI_BASE_URL,
            timeout_s=settings.EXTRACTION_TIMEOUT_S,
            retry_policy=RetryPolicy.from_settings(settings),
            **kwargs,
        )

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_request_body(self, prompt: str, max_tokens: Optional[int] = None) -> dict:
        return {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
        }

    async def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        """
        Send the prompt and return the completion text.

        Raises:
            RateLimitExhausted: 429 persisted past the retry budget.
            UpstreamError: Transport error, other non-2xx status or no content.
        """
        if not self.is_available:
            raise UpstreamError("No API key configured for text extraction")

        response = await self._post_with_backoff(
            self.build_request_body(prompt, max_tokens)
        )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamError(
                f"Unexpected response body: {e}", status_code=response.status_code
            ) from e

        if not content:
            raise UpstreamError("No content in response", status_code=response.status_code)
        return content

    async def _post_with_backoff(self, body: dict) -> httpx.Response:
        client = self._get_client()
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        attempt = 0
        waited_s = 0.0
        while True:
            attempt += 1
            try:
                response = await client.post(url, json=body, headers=headers)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Request failed: {e}") from e

            if response.status_code == 429:
                if not self.retry_policy.should_retry(429, attempt, waited_s):
                    raise RateLimitExhausted(attempts=attempt, waited_s=waited_s)

                delay = self.retry_policy.compute_backoff_s(attempt)
                remaining = self.retry_policy.max_total_wait_s - waited_s
                delay = min(delay, remaining)
                logger.warning(
                    f"Rate limited by upstream (attempt {attempt}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                waited_s += delay
                continue

            if response.status_code >= 400:
                raise UpstreamError(
                    f"Upstream returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            return response


class TextExtractionClient:
    """
    Prompt in, structured payload out.

    ``extract`` never raises: any failure is logged and None is returned so
    that one bad event never stops the batch. ``extract_or_raise`` exposes
    the typed failure for callers that record it (e.g. dead letters).
    """

    def __init__(self, llm_client: BaseLLMClient):
        self.llm_client = llm_client

    async def aclose(self) -> None:
        await self.llm_client.aclose()

    async def extract_or_raise(
        self, prompt: str, max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        text = await self.llm_client.complete(prompt, max_tokens=max_tokens)
        return ResponseJsonExtractor.extract_or_raise(text)

    async def extract(
        self, prompt: str, max_tokens: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self.extract_or_raise(prompt, max_tokens=max_tokens)
        except JsonNotFoundError:
            logger.error("No JSON found in extraction response")
        except MalformedJsonError as e:
            logger.error(
                f"JSON decoding error in extraction response: {e}",
                extra={"payload": {"fragment": e.fragment[:500]}},
            )
        except RateLimitExhausted as e:
            logger.error(f"Extraction abandoned: {e}")
        except ExtractionFailure as e:
            logger.error(f"Extraction failed: {e}")
        return None
