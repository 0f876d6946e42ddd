# src/manuscript_pipeline/llm/adapters/openai_adapter.py — v1
"""OpenAI chat completions adapter; answers are requested in JSON mode."""

from __future__ import annotations

import time
from typing import Any

from manuscript_pipeline.core.errors import LLMCallError
from manuscript_pipeline.llm.base_client import BaseLLMClient, category_for_status
from manuscript_pipeline.llm.models import LLMResponse, Message


class OpenAIAdapter(BaseLLMClient):
    def __init__(
        self, model: str = "gpt-4o", api_key: str = "", timeout: float = 300.0, **kwargs: Any
    ):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._sdk_client = None

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    def _chat(self):
        if self._sdk_client is None:
            import openai

            self._sdk_client = openai.AsyncOpenAI(
                api_key=self._api_key, timeout=self._timeout, max_retries=0
            )
        return self._sdk_client.chat.completions

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        idempotency_key: str | None = None,
    ) -> LLMResponse:
        import openai

        turns = [{"role": "system", "content": system}] if system else []
        turns += [{"role": m.role, "content": m.content} for m in messages]
        extra = {"extra_headers": {"Idempotency-Key": idempotency_key}} if idempotency_key else {}

        started = time.monotonic()
        try:
            completion = await self._chat().create(
                model=self._model,
                messages=turns,
                max_tokens=max_tokens,
                temperature=temperature,
                response_format={"type": "json_object"},
                **extra,
            )
        except openai.APITimeoutError as exc:
            raise LLMCallError(str(exc), "timeout") from exc
        except openai.APIConnectionError as exc:
            raise LLMCallError(str(exc), "5xx") from exc
        except openai.APIStatusError as exc:
            raise LLMCallError(
                str(exc), category_for_status(exc.status_code), exc.status_code
            ) from exc

        usage = completion.usage
        return LLMResponse(
            content=completion.choices[0].message.content or "",
            input_tokens=getattr(usage, "prompt_tokens", 0),
            output_tokens=getattr(usage, "completion_tokens", 0),
            model=self._model,
            provider=self.provider_name,
            latency_ms=int((time.monotonic() - started) * 1000),
            request_id=idempotency_key,
            raw_response=completion,
        )
