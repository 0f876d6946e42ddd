# src/manuscript_pipeline/llm/base_client.py — v1
"""Provider-neutral completion interface used by the stage analyzer.

Adapters raise LLMCallError with a provider-level category
(rate_limit, 5xx, auth, client, timeout). llm/retry.py maps the
category onto the pipeline ErrorKind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from manuscript_pipeline.core.errors import LLMErrorCategory
from manuscript_pipeline.llm.models import LLMResponse, Message


def category_for_status(status_code: int | None) -> LLMErrorCategory:
    """Classify an HTTP status returned by a provider."""
    if status_code == 429:
        return "rate_limit"
    if status_code in (401, 403):
        return "auth"
    if status_code in (408, 504):
        return "timeout"
    if status_code is not None and status_code >= 500:
        return "5xx"
    return "client"


class BaseLLMClient(ABC):
    """One JSON-producing completion call per stage attempt."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        idempotency_key: str | None = None,
    ) -> LLMResponse:
        """Text completion.

        Args:
            messages: Conversation turns (usually one user prompt).
            system: Optional system prompt.
            max_tokens: Output token bound.
            temperature: Sampling temperature (fixed per stage).
            idempotency_key: Forwarded to providers that deduplicate requests.

        Raises:
            LLMCallError: Provider rejected or failed the call.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, openai)."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier used for pricing."""
