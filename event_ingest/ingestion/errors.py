"""
Error taxonomy for the ingestion pipeline.

Errors are raised by the layer that detects them and caught at the task
boundary (TransformerStrategy.process / IngestionWorkerPool), so a failure
while handling one scraped event never reaches a sibling event.
"""

from typing import Any, Dict, List, Optional


class IngestionError(Exception):
    """Base class for all ingestion errors."""


class InputValidationError(IngestionError):
    """A canonical event is missing a required field or carries an invalid one."""

    def __init__(self, errors: List[str], values: Optional[Dict[str, Any]] = None):
        self.errors = list(errors)
        self.values = values or {}
        super().__init__("; ".join(self.errors) or "invalid event")


class ExtractionFailure(IngestionError):
    """The upstream extraction call did not yield a usable payload."""


class JsonNotFoundError(ExtractionFailure):
    """The response text contains no balanced brace-delimited region."""


class MalformedJsonError(ExtractionFailure):
    """A balanced region was found but it is not valid JSON."""

    def __init__(self, message: str, fragment: str = ""):
        self.fragment = fragment
        super().__init__(message)


class RateLimitExhausted(ExtractionFailure):
    """The upstream kept answering 429 until the retry budget ran out."""

    def __init__(self, attempts: int, waited_s: float):
        self.attempts = attempts
        self.waited_s = waited_s
        super().__init__(
            f"Rate limit still active after {attempts} attempts ({waited_s:.1f}s waited)"
        )


class UpstreamError(ExtractionFailure):
    """Transport failure, non-2xx status or a response without content."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(IngestionError):
    """The relational store rejected a write."""

    def __init__(
        self,
        message: str,
        values: Optional[Dict[str, Any]] = None,
        detail: Optional[str] = None,
    ):
        self.values = values or {}
        self.detail = detail
        super().__init__(message)
