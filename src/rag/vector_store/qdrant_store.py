# src/rag/vector_store/qdrant_store.py — v2
"""Qdrant vector store adapter.

Uses the qdrant-client SDK for local, in-memory or remote vector storage.
Requires: pip install qdrant-client.

Changelog:
    v2: delete_collection.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from capscan.rag.models import SearchResult
from capscan.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)

# Payload key holding the caller-owned ID (Qdrant only accepts UUID/int IDs).
_RECORD_ID_KEY = "record_id"


def _point_id(vec_id: str) -> str:
    """Deterministic UUID for a caller ID."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, vec_id))


class QdrantStore(BaseVectorStore):
    """Vector store backed by Qdrant."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        path: str | None = None,
    ) -> None:
        try:
            from qdrant_client import QdrantClient
        except ImportError as e:
            raise ImportError(
                "qdrant-client package required: pip install qdrant-client"
            ) from e

        if url:
            self._client = QdrantClient(url=url, api_key=api_key)
        elif path:
            self._client = QdrantClient(path=path)
        else:
            self._client = QdrantClient(":memory:")

    async def upsert(
        self,
        collection: str,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        """Insert or update vectors."""
        from qdrant_client.models import PointStruct

        points = []
        for i, vec_id in enumerate(ids):
            payload: dict[str, Any] = {"document": documents[i]}
            if metadatas and i < len(metadatas):
                payload.update(metadatas[i])
            payload[_RECORD_ID_KEY] = vec_id
            points.append(
                PointStruct(id=_point_id(vec_id), vector=embeddings[i], payload=payload)
            )
        self._client.upsert(collection_name=collection, points=points)

    async def query(
        self,
        collection: str,
        query_embedding: list[float],
        top_k: int = 10,
        filter: dict | None = None,
    ) -> list[SearchResult]:
        """Query by embedding similarity via query_points()."""
        search_kwargs: dict[str, Any] = {
            "collection_name": collection,
            "query": query_embedding,
            "limit": top_k,
            "with_payload": True,
        }
        if filter:
            from qdrant_client.models import FieldCondition, Filter, MatchValue

            conditions = [
                FieldCondition(key=k, match=MatchValue(value=v))
                for k, v in filter.items()
            ]
            search_kwargs["query_filter"] = Filter(must=conditions)

        response = self._client.query_points(**search_kwargs)
        return [
            self._to_result(hit, float(hit.score) if hit.score is not None else 0.0)
            for hit in response.points
        ]

    async def get(self, collection: str, ids: list[str]) -> list[SearchResult]:
        """Fetch entries by ID."""
        points = self._client.retrieve(
            collection_name=collection,
            ids=[_point_id(v) for v in ids],
            with_payload=True,
        )
        return [self._to_result(p, 1.0) for p in points]

    async def list_all(self, collection: str, limit: int = 100) -> list[SearchResult]:
        """List entries via scroll (first page only)."""
        points, _next = self._client.scroll(
            collection_name=collection, limit=limit, with_payload=True
        )
        return [self._to_result(p, 1.0) for p in points]

    async def delete(self, collection: str, ids: list[str]) -> None:
        """Delete vectors by ID."""
        from qdrant_client.models import PointIdsList

        self._client.delete(
            collection_name=collection,
            points_selector=PointIdsList(points=[_point_id(v) for v in ids]),
        )

    async def create_collection(self, collection: str, dimensions: int) -> None:
        """Create a named collection with cosine distance."""
        from qdrant_client.models import Distance, VectorParams

        if not self._client.collection_exists(collection):
            self._client.create_collection(
                collection_name=collection,
                vectors_config=VectorParams(size=dimensions, distance=Distance.COSINE),
            )

    async def delete_collection(self, collection: str) -> None:
        """Drop a collection; missing collections are ignored."""
        if self._client.collection_exists(collection):
            self._client.delete_collection(collection_name=collection)

    async def collection_exists(self, collection: str) -> bool:
        """Check if a collection exists."""
        return self._client.collection_exists(collection)

    async def count(self, collection: str) -> int:
        """Return number of vectors in a collection."""
        return self._client.count(collection_name=collection, exact=True).count

    @property
    def provider_name(self) -> str:
        return "qdrant"

    @staticmethod
    def _to_result(point: Any, score: float) -> SearchResult:
        payload = dict(point.payload or {})
        return SearchResult(
            source_type=payload.get("source_type", "capability"),
            source_id=payload.get(_RECORD_ID_KEY, str(point.id)),
            content=payload.get("document", ""),
            score=score,
            metadata=payload,
        )
