# src/manuscript_pipeline/llm/client_factory.py — v1
"""Resolve LLM_PROVIDER / LLM_MODEL to a concrete BaseLLMClient.

Adapters are referenced by dotted path so that a provider SDK is only
imported when its adapter is actually requested.
"""

from __future__ import annotations

import importlib
import logging

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "manuscript_pipeline.llm.adapters.anthropic_adapter.AnthropicAdapter",
    "openai": "manuscript_pipeline.llm.adapters.openai_adapter.OpenAIAdapter",
}

# Settings attribute holding the credential of each built-in provider.
_API_KEY_SETTING = {
    "anthropic": "anthropic_api_key",
    "openai": "openai_api_key",
}


class UnsupportedProviderError(ValueError):
    """No adapter is registered under the requested provider name."""


def create_llm_client(
    provider: str | None = None,
    model: str | None = None,
    settings: Settings | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Build the adapter for ``provider`` (default: ``settings.llm_provider``).

    Explicit keyword arguments win over values derived from settings; the
    request timeout and, for built-in providers, the API key are filled in
    when absent.
    """
    cfg = settings or Settings()
    name = provider or cfg.llm_provider
    class_path = _PROVIDER_REGISTRY.get(name)
    if class_path is None:
        known = ", ".join(sorted(_PROVIDER_REGISTRY))
        raise UnsupportedProviderError(f"Unsupported LLM provider {name!r} (known: {known})")

    options: dict[str, object] = {"timeout": cfg.llm_request_timeout_sec, **kwargs}
    options["model"] = model or cfg.llm_model
    key_setting = _API_KEY_SETTING.get(name)
    if key_setting is not None:
        options.setdefault("api_key", getattr(cfg, key_setting))

    adapter_cls = _resolve(class_path)
    logger.debug("LLM client %s built for model %s", name, options["model"])
    return adapter_cls(**options)


def register_provider(name: str, class_path: str) -> None:
    """Make ``class_path`` (a BaseLLMClient subclass) available as ``name``."""
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("LLM provider %s registered at %s", name, class_path)


def _resolve(class_path: str) -> type[BaseLLMClient]:
    module_name, _, attr = class_path.rpartition(".")
    return getattr(importlib.import_module(module_name), attr)
