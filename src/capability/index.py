# src/capability/index.py — v2
"""Semantic index of capability records on top of a vector store.

Records are keyed by their deterministic capability ID, so writing the same
resource twice replaces the first record instead of adding a second one.
The full record is kept as JSON in the vector metadata; flat fields are
duplicated beside it for store-side filtering.

Changelog:
    v2: delete_all drops and recreates the collection.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from capscan.capability.models import CapabilityMatch, generate_capability_id
from capscan.rag.embeddings.base_embedder import BaseEmbedder
from capscan.rag.models import SearchResult
from capscan.rag.vector_store.base_vector_store import BaseVectorStore
from capscan.scan.errors import IndexWriteError
from capscan.scan.models import CapabilityRecord, Complexity

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "capabilities"
_RECORD_KEY = "record"


class CapabilityIndex:
    """Store, search, list and delete capability records."""

    def __init__(
        self,
        vector_store: BaseVectorStore,
        embedder: BaseEmbedder,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self._store = vector_store
        self._embedder = embedder
        self._collection = collection
        self._initialized = False

    @property
    def collection(self) -> str:
        return self._collection

    async def initialize(self) -> None:
        """Create the collection if it does not exist yet."""
        if self._initialized:
            return
        if not await self._store.collection_exists(self._collection):
            await self._store.create_collection(
                self._collection, self._embedder.dimensions
            )
            logger.info(
                "Created collection %s (%d dims, %s)",
                self._collection, self._embedder.dimensions, self._store.provider_name,
            )
        self._initialized = True

    async def store(self, record: CapabilityRecord) -> str:
        """Upsert a record; return its ID.

        Raises:
            IndexWriteError: Embedding or vector store write failed.
        """
        try:
            await self.initialize()
            text = record.search_text()
            [vector] = await self._embedder.embed_texts([text])
            await self._store.upsert(
                collection=self._collection,
                ids=[record.id],
                embeddings=[vector],
                documents=[text],
                metadatas=[_to_metadata(record)],
            )
        except IndexWriteError:
            raise
        except Exception as e:
            raise IndexWriteError(
                f"Failed to index capability {record.resource_name}: {e}"
            ) from e
        logger.debug("Indexed capability %s (%s)", record.resource_name, record.id)
        return record.id

    async def search(
        self,
        query: str,
        limit: int = 10,
        complexity: Complexity | None = None,
        provider: str | None = None,
    ) -> list[CapabilityMatch]:
        """Semantic search with optional complexity and provider filters.

        The provider filter is a case-insensitive substring match on any of
        the record's providers, applied after the vector query.
        """
        await self.initialize()
        vector = await self._embedder.embed_query(query)
        store_filter = {"complexity": complexity} if complexity else None
        fetch = limit * 3 if provider else limit
        hits = await self._store.query(
            self._collection, vector, top_k=fetch, filter=store_filter
        )

        matches: list[CapabilityMatch] = []
        for hit in hits:
            record = _from_hit(hit)
            if record is None:
                continue
            if complexity and record.complexity != complexity:
                continue
            if provider and not _has_provider(record, provider):
                continue
            matches.append(CapabilityMatch(score=hit.score, capability=record))
            if len(matches) >= limit:
                break
        return matches

    async def get(self, capability_id: str) -> CapabilityRecord | None:
        """Record by ID, or None."""
        await self.initialize()
        for hit in await self._store.get(self._collection, [capability_id]):
            record = _from_hit(hit)
            if record is not None:
                return record
        return None

    async def get_by_name(self, resource_name: str) -> CapabilityRecord | None:
        """Record for a resource name, or None."""
        return await self.get(generate_capability_id(resource_name))

    async def list_records(self, limit: int = 100) -> list[CapabilityRecord]:
        """Up to ``limit`` stored records."""
        await self.initialize()
        records = [_from_hit(h) for h in await self._store.list_all(self._collection, limit)]
        return [r for r in records if r is not None]

    async def delete(self, capability_id: str) -> None:
        """Delete a record by ID (no-op when absent)."""
        await self.initialize()
        await self._store.delete(self._collection, [capability_id])
        logger.info("Deleted capability %s", capability_id)

    async def delete_by_name(self, resource_name: str) -> None:
        await self.delete(generate_capability_id(resource_name))

    async def delete_all(self) -> int:
        """Drop every record; return how many there were.

        The collection is dropped and recreated empty, which is cheaper than
        deleting records one by one on both backends.
        """
        await self.initialize()
        deleted = await self._store.count(self._collection)
        await self._store.delete_collection(self._collection)
        self._initialized = False
        await self.initialize()
        logger.info("Deleted all %d capabilities from %s", deleted, self._collection)
        return deleted

    async def count(self) -> int:
        await self.initialize()
        return await self._store.count(self._collection)


def _to_metadata(record: CapabilityRecord) -> dict:
    return {
        "source_type": "capability",
        "resource_name": record.resource_name,
        "complexity": record.complexity,
        "providers": ",".join(record.providers),
        "confidence": record.confidence,
        _RECORD_KEY: record.model_dump_json(by_alias=True),
    }


def _from_hit(hit: SearchResult) -> CapabilityRecord | None:
    raw = hit.metadata.get(_RECORD_KEY)
    if not raw:
        logger.warning("Index entry %s has no capability record", hit.source_id)
        return None
    try:
        return CapabilityRecord.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Skipping unreadable capability %s: %s", hit.source_id, e)
        return None


def _has_provider(record: CapabilityRecord, provider: str) -> bool:
    needle = provider.lower()
    return any(needle in p.lower() for p in record.providers)
