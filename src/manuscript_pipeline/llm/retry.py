# src/manuscript_pipeline/llm/retry.py — v1
"""Error classification and retry policy with exponential backoff.

Retries are not performed inline: a failed stage goes back to ``ready``
with a ``not_before`` time and the orchestrator re-dispatches it with a
new attempt number (and therefore a new idempotency key).
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.errors import ErrorKind, LLMCallError, PipelineError

_CATEGORY_TO_KIND: dict[str, ErrorKind] = {
    "rate_limit": "transient",
    "5xx": "transient",
    "timeout": "transient",
    "auth": "auth_error",
    # A 4xx other than 401/403/408/429 means the request we built is wrong
    "client": "invariant_violation",
}


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an exception into a pipeline ErrorKind.

    Unknown exceptions count as transient; the attempt cap bounds them.
    """
    if isinstance(error, PipelineError):
        return error.kind
    if isinstance(error, LLMCallError):
        return _CATEGORY_TO_KIND[error.category]
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return "transient"

    msg = str(error).lower()
    if "401" in msg or "403" in msg or "unauthorized" in msg or "api key" in msg:
        return "auth_error"
    return "transient"


def is_retryable(kind: ErrorKind) -> bool:
    """Only transient failures are retried with backoff."""
    return kind == "transient"


@dataclass(frozen=True)
class RetryPolicy:
    """Per-stage retry budget: exponential backoff with full jitter."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    cap_delay_s: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_s=settings.retry_base_s,
            cap_delay_s=settings.retry_cap_s,
        )

    def should_retry(self, kind: ErrorKind, attempt: int) -> bool:
        """Whether a stage that failed on ``attempt`` (1-based) gets another try."""
        return is_retryable(kind) and attempt < self.max_attempts

    def backoff_delay(
        self, attempt: int, rng: Callable[[], float] = random.random
    ) -> float:
        """Delay before the attempt following ``attempt`` (1-based).

        Full jitter: uniform in [0, min(cap, base * 2**(attempt-1))].
        """
        ceiling = min(self.cap_delay_s, self.base_delay_s * (2 ** max(0, attempt - 1)))
        return rng() * ceiling
