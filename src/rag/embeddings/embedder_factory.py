# src/rag/embeddings/embedder_factory.py — v2
"""Factory: build the embedder that vectorises capability search text."""

from __future__ import annotations

import importlib
import logging

from capscan.config.settings import Settings
from capscan.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)

# provider -> (embedder class path, Settings attribute holding its API key)
_PROVIDERS: dict[str, tuple[str, str]] = {
    "openai": ("capscan.rag.embeddings.openai_embedder.OpenAIEmbedder", "openai_api_key"),
}


class UnsupportedEmbeddingProviderError(ValueError):
    """EMBEDDING_PROVIDER names no known embedder."""


def create_embedder(settings: Settings) -> BaseEmbedder:
    """Embedder for EMBEDDING_PROVIDER / EMBEDDING_MODEL / EMBEDDING_DIMENSIONS.

    The dimension count must match the capability collection; changing it
    requires a fresh collection.
    """
    provider = settings.embedding_provider
    if provider not in _PROVIDERS:
        raise UnsupportedEmbeddingProviderError(
            f"Unsupported embedding provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDERS))}"
        )

    class_path, key_attr = _PROVIDERS[provider]
    module_path, class_name = class_path.rsplit(".", 1)
    embedder_cls = getattr(importlib.import_module(module_path), class_name)

    logger.debug(
        "Creating embedder: provider=%s, model=%s, dims=%d",
        provider, settings.embedding_model, settings.embedding_dimensions,
    )
    return embedder_cls(
        model=settings.embedding_model,
        api_key=getattr(settings, key_attr),
        dimensions=settings.embedding_dimensions,
    )
