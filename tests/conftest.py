# tests/conftest.py — v2
"""Shared test fixtures for all unit tests.

Provides in-memory fakes for the vector store, embedder and discovery
adapter, a mock LLM client returning a valid classification, and stores
rooted in tmp_path. No external services are contacted.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from capscan.capability.index import CapabilityIndex
from capscan.capability.models import generate_capability_id
from capscan.discovery.base_discovery import BaseResourceDiscovery, DiscoveryError
from capscan.discovery.models import ResourceDescription
from capscan.llm.base_client import BaseLLMClient
from capscan.llm.models import LLMResponse
from capscan.rag.embeddings.base_embedder import BaseEmbedder
from capscan.rag.models import SearchResult
from capscan.rag.vector_store.base_vector_store import BaseVectorStore
from capscan.scan.executor import BatchExecutor
from capscan.scan.inference import ItemInferenceAdapter
from capscan.scan.json_session_store import JsonSessionStore
from capscan.scan.models import CapabilityRecord

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

VALID_CAPABILITY = {
    "capabilities": ["postgresql", "database"],
    "providers": ["aws", "gcp"],
    "abstractions": ["managed service"],
    "complexity": "low",
    "description": "Managed PostgreSQL database",
    "useCase": "Application data storage",
    "confidence": 0.9,
}


# === FAKES ===


class InMemoryVectorStore(BaseVectorStore):
    """Dict-backed vector store scoring by cosine similarity."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, tuple[list[float], str, dict]]] = {}

    async def upsert(self, collection, ids, embeddings, documents, metadatas=None):
        col = self.collections.setdefault(collection, {})
        metas = metadatas or [{} for _ in ids]
        for id_, vec, doc, meta in zip(ids, embeddings, documents, metas):
            col[id_] = (vec, doc, dict(meta))

    async def query(self, collection, query_embedding, top_k=10, filter=None):
        hits = []
        for id_, (vec, doc, meta) in self.collections.get(collection, {}).items():
            if filter and any(meta.get(k) != v for k, v in filter.items()):
                continue
            hits.append(self._result(id_, doc, meta, _cosine(query_embedding, vec)))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    async def get(self, collection, ids):
        col = self.collections.get(collection, {})
        return [self._result(i, col[i][1], col[i][2]) for i in ids if i in col]

    async def list_all(self, collection, limit=100):
        col = self.collections.get(collection, {})
        return [self._result(i, d, m) for i, (_v, d, m) in list(col.items())[:limit]]

    async def delete(self, collection, ids):
        col = self.collections.get(collection, {})
        for id_ in ids:
            col.pop(id_, None)

    async def create_collection(self, collection, dimensions):
        self.collections.setdefault(collection, {})

    async def delete_collection(self, collection):
        self.collections.pop(collection, None)

    async def collection_exists(self, collection):
        return collection in self.collections

    async def count(self, collection):
        return len(self.collections.get(collection, {}))

    @property
    def provider_name(self) -> str:
        return "memory"

    @staticmethod
    def _result(id_, doc, meta, score=1.0) -> SearchResult:
        return SearchResult(source_id=id_, content=doc, score=score, metadata=meta)


class LetterEmbedder(BaseEmbedder):
    """Letter-frequency vectors: texts sharing words score higher."""

    async def embed_texts(self, texts):
        return [_letters(t) for t in texts]

    async def embed_query(self, query):
        return _letters(query)

    @property
    def dimensions(self) -> int:
        return 26

    @property
    def provider_name(self) -> str:
        return "letters"

    @property
    def model_name(self) -> str:
        return "letters-v1"


class FakeDiscovery(BaseResourceDiscovery):
    """Static resource listing; names in ``broken`` cannot be described."""

    def __init__(
        self,
        resources: list[str] | None = None,
        broken: set[str] | None = None,
        list_error: Exception | None = None,
    ) -> None:
        self.resources = resources if resources is not None else []
        self.broken = broken or set()
        self.list_error = list_error
        self.described: list[str] = []

    async def list_resource_types(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.resources)

    async def describe(self, resource_name):
        self.described.append(resource_name)
        if resource_name in self.broken:
            raise DiscoveryError(f"the server doesn't have a resource type {resource_name!r}")
        kind, _, group = resource_name.partition(".")
        return ResourceDescription(
            resource_name=resource_name,
            definition=f"KIND:     {kind}\nGROUP:    {group}\nVERSION:  v1\n",
            api_version=f"{group}/v1" if group else "v1",
            group=group or None,
            version="v1",
        )

    @property
    def provider_name(self) -> str:
        return "fake"


def _letters(text: str) -> list[float]:
    vec = [0.0] * 26
    for ch in text.lower():
        if "a" <= ch <= "z":
            vec[ord(ch) - ord("a")] += 1.0
    return vec


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def make_record(resource_name: str, **overrides) -> CapabilityRecord:
    """CapabilityRecord for a resource with VALID_CAPABILITY defaults."""
    data = {
        "capabilities": ["postgresql", "database"],
        "providers": ["aws", "gcp"],
        "abstractions": ["managed service"],
        "complexity": "low",
        "description": "Managed PostgreSQL database",
        "use_case": "Application data storage",
        "confidence": 0.9,
        "id": generate_capability_id(resource_name),
        "resource_name": resource_name,
        "analyzed_at": FIXED_NOW,
    }
    data.update(overrides)
    return CapabilityRecord(**data)


# === FIXTURES: Sample data ===


@pytest.fixture
def capability_data() -> dict:
    """Valid classification output as the LLM returns it (camelCase)."""
    return dict(VALID_CAPABILITY)


@pytest.fixture
def record_factory():
    """Build CapabilityRecords: ``record_factory("Service", complexity="high")``."""
    return make_record


# === FIXTURES: LLM ===


@pytest.fixture
def valid_capability_json() -> str:
    return json.dumps(VALID_CAPABILITY)


@pytest.fixture
def mock_llm_response(valid_capability_json: str) -> LLMResponse:
    """Standard mock LLM response with a valid classification."""
    return LLMResponse(
        content=valid_capability_json,
        input_tokens=100,
        output_tokens=50,
        model="claude-sonnet-4-20250514",
        provider="anthropic",
        latency_ms=500,
    )


@pytest.fixture
def mock_llm_client(mock_llm_response: LLMResponse) -> AsyncMock:
    """Mock BaseLLMClient with default response."""
    client = AsyncMock(spec=BaseLLMClient)
    client.complete.return_value = mock_llm_response
    client.is_configured = True
    client.provider_name = "anthropic"
    client.model_name = "claude-sonnet-4-20250514"
    return client


# === FIXTURES: Adapters and stores ===


@pytest.fixture
def fake_discovery() -> FakeDiscovery:
    return FakeDiscovery(["SQL.devopstoolkit.live", "Deployment.apps", "Service"])


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def embedder() -> LetterEmbedder:
    return LetterEmbedder()


@pytest.fixture
def capability_index(vector_store, embedder) -> CapabilityIndex:
    return CapabilityIndex(vector_store, embedder)


@pytest.fixture
def session_store(tmp_path) -> JsonSessionStore:
    return JsonSessionStore(tmp_path / "sessions")


@pytest.fixture
def inference_adapter(fake_discovery, mock_llm_client) -> ItemInferenceAdapter:
    return ItemInferenceAdapter(fake_discovery, mock_llm_client, retry_configs={})


@pytest.fixture
def executor(session_store, inference_adapter, capability_index, fake_discovery) -> BatchExecutor:
    """Executor whose finished sessions stay on disk for the test's duration."""
    return BatchExecutor(
        session_store,
        inference_adapter,
        capability_index,
        fake_discovery,
        cleanup_delay_s=3600,
    )
