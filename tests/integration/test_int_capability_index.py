# tests/integration/test_int_capability_index.py — v2
"""Integration tests for CapabilityIndex over real vector store backends.

Covers: capability/index.py, qdrant_store.py, chromadb_store.py
"""

from __future__ import annotations

import pytest

from capscan.capability.index import CapabilityIndex

BACKENDS = ["qdrant_memory_store", "chromadb_memory_store"]


@pytest.fixture(params=BACKENDS)
def index(request, embedder, unique_collection) -> CapabilityIndex:
    store = request.getfixturevalue(request.param)
    return CapabilityIndex(store, embedder, unique_collection)


class TestCapabilityIndexBackends:
    @pytest.mark.asyncio
    async def test_store_and_get(self, index, record_factory):
        record = record_factory("SQL.devopstoolkit.live")
        assert await index.store(record) == record.id

        loaded = await index.get(record.id)
        assert loaded is not None
        assert loaded.resource_name == "SQL.devopstoolkit.live"
        assert loaded.providers == ["aws", "gcp"]
        assert (await index.get_by_name("SQL.devopstoolkit.live")).id == record.id

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, index, record_factory):
        await index.store(record_factory("Service"))
        await index.store(record_factory("Service", complexity="high"))
        assert await index.count() == 1
        assert (await index.get_by_name("Service")).complexity == "high"

    @pytest.mark.asyncio
    async def test_search_with_complexity_filter(self, index, record_factory):
        low = record_factory("SQL.devopstoolkit.live")
        await index.store(low)
        await index.store(record_factory("Deployment.apps", complexity="medium"))

        matches = await index.search(low.search_text(), limit=5, complexity="low")
        assert [m.capability.resource_name for m in matches] == ["SQL.devopstoolkit.live"]

    @pytest.mark.asyncio
    async def test_provider_filter(self, index, record_factory):
        await index.store(record_factory("Service", providers=["kubernetes"]))
        await index.store(record_factory("SQL.devopstoolkit.live"))

        matches = await index.search("database", provider="AWS")
        assert [m.capability.resource_name for m in matches] == ["SQL.devopstoolkit.live"]

    @pytest.mark.asyncio
    async def test_delete(self, index, record_factory):
        record = record_factory("Service")
        await index.store(record)
        await index.delete(record.id)
        assert await index.get(record.id) is None
        assert await index.list_records() == []

    @pytest.mark.asyncio
    async def test_delete_all(self, index, record_factory):
        for name in ("Service", "Deployment.apps"):
            await index.store(record_factory(name))
        assert await index.delete_all() == 2
        assert await index.count() == 0
        await index.store(record_factory("Service"))
        assert await index.count() == 1
