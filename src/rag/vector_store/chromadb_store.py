# src/rag/vector_store/chromadb_store.py — v3
"""ChromaDB backend for the capability index.

Collections are created with cosine distance so that ``score`` is
``1 - distance`` on the same scale as the Qdrant backend. Reads against a
collection that does not exist yet return nothing instead of raising.

Requires: pip install chromadb.

Changelog:
    v2: Cosine collections, tolerant reads on missing collections.
    v3: delete_collection.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from capscan.rag.models import SearchResult
from capscan.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)

_COLLECTION_METADATA = {"hnsw:space": "cosine"}
_INCLUDE = ["documents", "metadatas"]


class ChromaDBStore(BaseVectorStore):
    """Capability vectors in an embedded, persistent or remote Chroma."""

    def __init__(
        self,
        persist_path: str | Path | None = None,
        host: str | None = None,
        port: int = 8000,
    ) -> None:
        try:
            import chromadb
        except ImportError as e:
            raise ImportError(
                "chromadb package required: pip install chromadb"
            ) from e

        if host:
            self._client = chromadb.HttpClient(host=host, port=port)
            mode = f"http://{host}:{port}"
        elif persist_path:
            path = Path(persist_path).expanduser()
            self._client = chromadb.PersistentClient(path=str(path))
            mode = str(path)
        else:
            self._client = chromadb.Client()
            mode = "in-process"
        logger.debug("ChromaDB client ready (%s)", mode)

    async def upsert(
        self,
        collection: str,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        self._collection(collection, create=True).upsert(
            ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas
        )

    async def query(
        self,
        collection: str,
        query_embedding: list[float],
        top_k: int = 10,
        filter: dict | None = None,
    ) -> list[SearchResult]:
        col = self._collection(collection)
        if col is None:
            return []
        kwargs: dict[str, Any] = {
            "query_embeddings": [query_embedding],
            "n_results": top_k,
            "include": [*_INCLUDE, "distances"],
        }
        where = _build_where(filter)
        if where:
            kwargs["where"] = where
        raw = col.query(**kwargs)

        # Query results are nested one level per query embedding
        first = {key: (raw.get(key) or [[]])[0] for key in ("ids", "documents", "metadatas")}
        distances = (raw.get("distances") or [[]])[0]
        hits = _from_get_result(first)
        for hit, distance in zip(hits, distances):
            hit.score = 1.0 - float(distance)
        return hits

    async def get(self, collection: str, ids: list[str]) -> list[SearchResult]:
        col = self._collection(collection)
        if col is None:
            return []
        return _from_get_result(col.get(ids=ids, include=_INCLUDE))

    async def list_all(self, collection: str, limit: int = 100) -> list[SearchResult]:
        col = self._collection(collection)
        if col is None:
            return []
        return _from_get_result(col.get(limit=limit, include=_INCLUDE))

    async def delete(self, collection: str, ids: list[str]) -> None:
        col = self._collection(collection)
        if col is not None and ids:
            col.delete(ids=ids)

    async def create_collection(self, collection: str, dimensions: int) -> None:
        # Chroma infers the dimension from the first vector written
        self._collection(collection, create=True)
        logger.debug("Chroma collection %s ready (%d dims)", collection, dimensions)

    async def delete_collection(self, collection: str) -> None:
        if self._collection(collection) is not None:
            self._client.delete_collection(collection)
            logger.debug("Chroma collection %s dropped", collection)

    async def collection_exists(self, collection: str) -> bool:
        return self._collection(collection) is not None

    async def count(self, collection: str) -> int:
        col = self._collection(collection)
        return col.count() if col is not None else 0

    @property
    def provider_name(self) -> str:
        return "chromadb"

    def _collection(self, name: str, create: bool = False) -> Any:
        if create:
            return self._client.get_or_create_collection(name, metadata=_COLLECTION_METADATA)
        try:
            return self._client.get_collection(name)
        except Exception:  # NotFoundError on chromadb>=0.6, ValueError before
            return None


def _build_where(filter: dict | None) -> dict | None:
    """Chroma ``where`` clause for flat equality filters."""
    if not filter:
        return None
    if len(filter) == 1:
        return dict(filter)
    return {"$and": [{k: v} for k, v in filter.items()]}


def _from_get_result(results: dict) -> list[SearchResult]:
    ids = results.get("ids") or []
    docs = results.get("documents") or [None] * len(ids)
    metas = results.get("metadatas") or [None] * len(ids)
    out: list[SearchResult] = []
    for doc_id, doc, meta in zip(ids, docs, metas):
        meta = meta or {}
        out.append(
            SearchResult(
                source_type=meta.get("source_type", "capability"),
                source_id=doc_id,
                content=doc or "",
                score=1.0,
                metadata=meta,
            )
        )
    return out
