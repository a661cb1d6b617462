"""
event_ingest.ingestion.extraction.resilience

Backoff policy for the extraction call. Only HTTP 429 is retried, and both
the number of retries and the total time spent waiting are capped.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from event_ingest.configs.settings import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 5.0
    max_delay_s: float = 60.0
    max_total_wait_s: float = 180.0
    jitter: float = 0.25  # fraction of the delay, applied +/-
    retry_on_status: tuple[int, ...] = (429,)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.RATE_LIMIT_MAX_RETRIES,
            base_delay_s=settings.RATE_LIMIT_BASE_DELAY_S,
            max_delay_s=settings.RATE_LIMIT_MAX_DELAY_S,
            max_total_wait_s=settings.RATE_LIMIT_MAX_TOTAL_WAIT_S,
            jitter=settings.RATE_LIMIT_JITTER,
        )

    def compute_backoff_s(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff_mode == "none":
            return 0.0

        steps = 0 if self.backoff_mode == "fixed" else max(0, attempt - 1)
        delay = min(self.base_delay_s * (2**steps), self.max_delay_s)
        if self.jitter > 0:
            delay *= 1.0 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def should_retry(self, status_code: int, attempt: int, waited_s: float) -> bool:
        """True if a response with status_code may be retried after `attempt` tries."""
        if status_code not in self.retry_on_status:
            return False
        if attempt > self.max_retries:
            return False
        return waited_s < self.max_total_wait_s
