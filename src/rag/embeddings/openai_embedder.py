# src/rag/embeddings/openai_embedder.py — v2
"""OpenAI embedding adapter for capability search text.

Models: text-embedding-3-small, text-embedding-3-large. Both accept a
``dimensions`` argument, which must match the index collection.
"""

from __future__ import annotations

import logging

from capscan.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)

# Inputs per embeddings request
_BATCH_SIZE = 256


class OpenAIEmbedder(BaseEmbedder):
    """Embeddings via the OpenAI API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int = 1536,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._dimensions = dimensions
        self.__client = None

    @property
    def _client(self):
        if self.__client is None:
            try:
                import openai
            except ImportError as e:
                raise ImportError(
                    "openai package required: pip install openai"
                ) from e
            self.__client = openai.AsyncOpenAI(api_key=self._api_key or "")
        return self.__client

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in request-sized batches, preserving order."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), _BATCH_SIZE):
            # The API rejects empty strings
            batch = [t if t.strip() else " " for t in texts[start:start + _BATCH_SIZE]]
            response = await self._client.embeddings.create(
                input=batch, model=self._model, dimensions=self._dimensions
            )
            vectors.extend(item.embedding for item in response.data)
        logger.debug("Embedded %d text(s) with %s", len(texts), self._model)
        return vectors

    async def embed_query(self, query: str) -> list[float]:
        [vector] = await self.embed_texts([query])
        return vector

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model
