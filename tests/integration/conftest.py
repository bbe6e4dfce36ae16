# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests against in-process backends.

Qdrant runs in ``:memory:`` mode and ChromaDB in-process, so no containers
are needed. Tests skip when the client library is not installed.
"""

from __future__ import annotations

import uuid

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "qdrant: marks tests requiring qdrant-client")
    config.addinivalue_line("markers", "chromadb: marks tests requiring chromadb")


@pytest.fixture
def unique_collection() -> str:
    return f"test_caps_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def qdrant_memory_store():
    pytest.importorskip("qdrant_client")
    from capscan.rag.vector_store.qdrant_store import QdrantStore

    return QdrantStore()


@pytest.fixture
def chromadb_memory_store():
    pytest.importorskip("chromadb")
    from capscan.rag.vector_store.chromadb_store import ChromaDBStore

    return ChromaDBStore()
