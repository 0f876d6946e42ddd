# src/manuscript_pipeline/llm/adapters/anthropic_adapter.py — v1
"""Claude stage calls through the anthropic Messages API.

The SDK client is created with ``max_retries=0``; attempts are counted and
backed off by the orchestrator. Timeouts, connection failures and HTTP
status errors surface as LLMCallError so they can be classified.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from manuscript_pipeline.core.errors import LLMCallError
from manuscript_pipeline.llm.base_client import BaseLLMClient, category_for_status
from manuscript_pipeline.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)


def _as_call_error(exc: Exception) -> Exception:
    import anthropic

    if isinstance(exc, anthropic.APITimeoutError):
        return LLMCallError(str(exc), "timeout")
    if isinstance(exc, anthropic.APIConnectionError):
        return LLMCallError(str(exc), "5xx")
    if isinstance(exc, anthropic.APIStatusError):
        return LLMCallError(str(exc), category_for_status(exc.status_code), exc.status_code)
    return exc


def _first_text(blocks: list[Any]) -> str:
    texts = (block.text for block in blocks if getattr(block, "type", None) == "text")
    return next(texts, "")


class AnthropicAdapter(BaseLLMClient):
    """BaseLLMClient backed by ``anthropic.AsyncAnthropic``."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        timeout: float = 300.0,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self.__client = None

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model

    @property
    def _client(self):
        if self.__client is None:
            try:
                import anthropic
            except ImportError as e:
                raise ImportError("anthropic package required: pip install anthropic") from e
            self.__client = anthropic.AsyncAnthropic(
                api_key=self._api_key or "", timeout=self._timeout, max_retries=0
            )
        return self.__client

    def _request_params(
        self,
        messages: list[Message],
        system: str | None,
        max_tokens: int,
        temperature: float,
        idempotency_key: str | None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self._model,
            "messages": [m.model_dump(include={"role", "content"}) for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            params["system"] = system
        if idempotency_key:
            params["extra_headers"] = {"Idempotency-Key": idempotency_key}
        return params

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        idempotency_key: str | None = None,
    ) -> LLMResponse:
        params = self._request_params(messages, system, max_tokens, temperature, idempotency_key)
        started = time.monotonic()
        try:
            reply = await self._client.messages.create(**params)
        except Exception as exc:
            raise _as_call_error(exc) from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            "anthropic %s answered in %d ms (%d in / %d out tokens)",
            reply.model, elapsed_ms, reply.usage.input_tokens, reply.usage.output_tokens,
        )
        return LLMResponse(
            content=_first_text(reply.content),
            input_tokens=reply.usage.input_tokens,
            output_tokens=reply.usage.output_tokens,
            model=reply.model,
            provider=self.provider_name,
            latency_ms=elapsed_ms,
            request_id=idempotency_key,
            raw_response=reply,
        )
