"""
Unit tests for the llm_client module.

Tests for OpenAIChatClient (request shape, 429 backoff, soft failures) and
TextExtractionClient (JSON extraction and None-on-failure contract).
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from event_ingest.configs.settings import Settings
from event_ingest.ingestion.errors import RateLimitExhausted, UpstreamError
from event_ingest.ingestion.extraction.llm_client import (
    OpenAIChatClient,
    TextExtractionClient,
)
from event_ingest.ingestion.extraction.resilience import RetryPolicy

# =============================================================================
# HELPERS
# =============================================================================


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_client(handler, policy=None, sleep=None):
    """OpenAIChatClient whose HTTP calls go to handler."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIChatClient(
        api_key="test-key",
        retry_policy=policy
        or RetryPolicy(max_retries=3, base_delay_s=5.0, max_delay_s=60.0, jitter=0.0),
        http_client=http_client,
        sleep=sleep or AsyncMock(),
    )


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestOpenAIChatClientRequest:
    """Tests for the request sent upstream."""

    def test_request_body_and_headers(self):
        """Prompt, model, max_tokens and temperature are sent."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json=completion('{"events": []}'))

        client = make_client(handler)
        text = asyncio.run(client.complete("extract this", max_tokens=2000))

        assert text == '{"events": []}'
        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["temperature"] == 0.2
        assert seen["body"]["max_tokens"] == 2000
        assert seen["body"]["messages"][-1]["content"] == "extract this"

    def test_default_token_budget(self):
        client = OpenAIChatClient(api_key="k", max_tokens=1000)
        assert client.build_request_body("p")["max_tokens"] == 1000

    def test_from_settings_injects_configuration(self):
        settings = Settings(
            OPENAI_API_KEY="sk-test",
            EXTRACTION_MODEL="gpt-test",
            EXTRACTION_TEMPERATURE=0.2,
            RATE_LIMIT_MAX_RETRIES=2,
        )
        client = OpenAIChatClient.from_settings(settings)

        assert client.is_available is True
        assert client.model_name == "gpt-test"
        assert client.temperature == 0.2
        assert client.retry_policy.max_retries == 2

    def test_missing_api_key_is_upstream_error(self):
        client = OpenAIChatClient(api_key=None)
        with pytest.raises(UpstreamError):
            asyncio.run(client.complete("p"))


class TestRateLimitBackoff:
    """Tests for bounded retry on HTTP 429."""

    def test_retries_after_429_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429, json={"error": "rate limited"})
            return httpx.Response(200, json=completion("ok"))

        sleep = AsyncMock()
        client = make_client(handler, sleep=sleep)

        assert asyncio.run(client.complete("p")) == "ok"
        assert len(calls) == 3
        # exponential: 5s, then 10s
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 10.0]

    def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        client = make_client(handler)

        with pytest.raises(RateLimitExhausted) as exc_info:
            asyncio.run(client.complete("p"))

        # one initial request plus three retries
        assert len(calls) == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.waited_s == 5.0 + 10.0 + 20.0

    def test_total_wait_cap(self):
        """The retry loop stops once the total wait budget is used."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        policy = RetryPolicy(
            max_retries=10, base_delay_s=5.0, max_total_wait_s=12.0, jitter=0.0
        )
        sleep = AsyncMock()
        client = make_client(handler, policy=policy, sleep=sleep)

        with pytest.raises(RateLimitExhausted):
            asyncio.run(client.complete("p"))

        waited = sum(c.args[0] for c in sleep.await_args_list)
        assert waited == pytest.approx(12.0)
        assert len(calls) == 3

    def test_other_status_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = make_client(handler)

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("p"))

        assert exc_info.value.status_code == 500
        assert len(calls) == 1

    def test_transport_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)
        with pytest.raises(UpstreamError):
            asyncio.run(client.complete("p"))

    def test_empty_content_is_upstream_error(self):
        client = make_client(lambda request: httpx.Response(200, json=completion("")))
        with pytest.raises(UpstreamError, match="No content"):
            asyncio.run(client.complete("p"))

    def test_unexpected_body_is_upstream_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(UpstreamError):
            asyncio.run(client.complete("p"))


class TestRetryPolicy:
    """Tests for RetryPolicy backoff computation."""

    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay_s=5.0, max_delay_s=60.0, jitter=0.0)
        assert [policy.compute_backoff_s(a) for a in (1, 2, 3, 4, 5)] == [
            5.0,
            10.0,
            20.0,
            40.0,
            60.0,
        ]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(base_delay_s=10.0, jitter=0.25)
        for _ in range(50):
            assert 7.5 <= policy.compute_backoff_s(1) <= 12.5

    def test_fixed_mode(self):
        policy = RetryPolicy(backoff_mode="fixed", base_delay_s=5.0, jitter=0.0)
        assert policy.compute_backoff_s(4) == 5.0

    def test_should_retry_only_429(self):
        policy = RetryPolicy(max_retries=2)
        assert policy.should_retry(429, attempt=1, waited_s=0.0) is True
        assert policy.should_retry(500, attempt=1, waited_s=0.0) is False
        assert policy.should_retry(429, attempt=3, waited_s=0.0) is False


class TestTextExtractionClient:
    """Tests for TextExtractionClient.extract / extract_or_raise."""

    def test_extracts_json_from_response(self, scripted_extraction):
        client = scripted_extraction({"events": [{"title": "A"}]})
        assert asyncio.run(client.extract("p")) == {"events": [{"title": "A"}]}

    def test_no_json_returns_none(self, scripted_extraction, caplog):
        client = scripted_extraction("Sorry, nothing to extract.")
        with caplog.at_level("ERROR"):
            assert asyncio.run(client.extract("p")) is None
        assert "No JSON found" in caplog.text

    def test_malformed_json_returns_none(self, scripted_extraction, caplog):
        client = scripted_extraction('{"events": [,]}')
        with caplog.at_level("ERROR"):
            assert asyncio.run(client.extract("p")) is None
        assert "JSON decoding error" in caplog.text

    def test_rate_limit_exhausted_returns_none(self, scripted_extraction):
        client = scripted_extraction(RateLimitExhausted(attempts=6, waited_s=150.0))
        assert asyncio.run(client.extract("p")) is None

    def test_upstream_error_returns_none(self, scripted_extraction):
        client = scripted_extraction(UpstreamError("HTTP 500", status_code=500))
        assert asyncio.run(client.extract("p")) is None

    def test_passes_token_budget(self, scripted_extraction):
        client = scripted_extraction({"events": []})
        asyncio.run(client.extract("p", max_tokens=2000))
        assert client.llm_client.max_tokens == [2000]

    def test_end_to_end_over_http(self):
        """OpenAIChatClient + extractor: prose-wrapped JSON is decoded."""

        def handler(request):
            return httpx.Response(
                200, json=completion('Result:\n{"events": [{"title": "B"}]}\nDone.')
            )

        client = TextExtractionClient(make_client(handler))
        assert asyncio.run(client.extract("p")) == {"events": [{"title": "B"}]}
