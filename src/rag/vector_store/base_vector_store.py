# src/rag/vector_store/base_vector_store.py — v2
"""Abstract vector store interface.

Changelog:
    v2: delete_collection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from capscan.rag.models import SearchResult


class BaseVectorStore(ABC):
    """Unified interface for vector store backends.

    IDs passed in are caller-owned strings; upsert by an existing ID replaces
    the stored vector, which keeps repeated writes of one record idempotent.
    """

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        """Insert or update vectors with associated documents and metadata."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        query_embedding: list[float],
        top_k: int = 10,
        filter: dict | None = None,
    ) -> list[SearchResult]:
        """Query vectors by similarity, optionally with equality filters."""

    @abstractmethod
    async def get(self, collection: str, ids: list[str]) -> list[SearchResult]:
        """Fetch stored entries by ID (missing IDs are skipped)."""

    @abstractmethod
    async def list_all(self, collection: str, limit: int = 100) -> list[SearchResult]:
        """List stored entries without a query vector."""

    @abstractmethod
    async def delete(self, collection: str, ids: list[str]) -> None:
        """Delete vectors by ID."""

    @abstractmethod
    async def create_collection(self, collection: str, dimensions: int) -> None:
        """Create a named collection with specified vector dimensions."""

    @abstractmethod
    async def delete_collection(self, collection: str) -> None:
        """Drop a collection and everything in it (no-op when absent)."""

    @abstractmethod
    async def collection_exists(self, collection: str) -> bool:
        """Check if a collection exists."""

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Return number of vectors in a collection."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (chromadb, qdrant)."""
