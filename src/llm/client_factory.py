# src/llm/client_factory.py — v2
"""Factory: build the classification client named in settings.

Adapters are imported lazily, so only the configured provider's SDK has to
be installed.
"""

from __future__ import annotations

import importlib
import logging

from capscan.config.settings import Settings
from capscan.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

# provider -> (adapter class path, Settings attribute holding its API key)
_PROVIDERS: dict[str, tuple[str, str | None]] = {
    "anthropic": (
        "capscan.llm.adapters.anthropic_adapter.AnthropicAdapter", "anthropic_api_key"
    ),
    "openai": ("capscan.llm.adapters.openai_adapter.OpenAIAdapter", "openai_api_key"),
}


class UnsupportedProviderError(ValueError):
    """The requested LLM provider has no registered adapter."""


def create_llm_client(
    provider: str,
    model: str,
    settings: Settings | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the adapter registered for ``provider``.

    With ``settings``, the provider's API key and the request timeout are
    filled in unless passed explicitly.

    Raises:
        UnsupportedProviderError: Unknown provider.
    """
    try:
        class_path, key_attr = _PROVIDERS[provider]
    except KeyError:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDERS))}"
        ) from None

    module_path, class_name = class_path.rsplit(".", 1)
    adapter_cls = getattr(importlib.import_module(module_path), class_name)

    init_kwargs: dict[str, object] = {"model": model, **kwargs}
    if settings is not None:
        if key_attr:
            init_kwargs.setdefault("api_key", getattr(settings, key_attr))
        init_kwargs.setdefault("timeout_s", settings.llm_timeout_s)

    logger.debug("Creating LLM client: provider=%s, model=%s", provider, model)
    return adapter_cls(**init_kwargs)


def create_llm_client_from_settings(settings: Settings) -> BaseLLMClient:
    """The classification client configured by LLM_PROVIDER and LLM_MODEL."""
    return create_llm_client(settings.llm_provider, settings.llm_model, settings)


def register_provider(name: str, class_path: str, key_setting: str | None = None) -> None:
    """Register an extra adapter, optionally with the Settings field of its key."""
    _PROVIDERS[name] = (class_path, key_setting)
    logger.info("Registered LLM provider: %s -> %s", name, class_path)
