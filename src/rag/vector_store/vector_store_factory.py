# src/rag/vector_store/vector_store_factory.py — v1
"""Factory: instantiate vector store from configuration."""

from __future__ import annotations

import logging

from capscan.config.settings import Settings
from capscan.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class UnsupportedVectorStoreError(ValueError):
    """Raised when a vector store type is not supported."""


def create_vector_store(settings: Settings) -> BaseVectorStore:
    """Instantiate the configured vector store.

    Args:
        settings: Application settings (VECTOR_DB_TYPE, VECTOR_DB_URL, VECTOR_DB_PATH).

    Raises:
        UnsupportedVectorStoreError: If type is not supported.
    """
    db_type = settings.vector_db_type
    logger.debug("Creating vector store: type=%s", db_type)

    if db_type == "chromadb":
        from capscan.rag.vector_store.chromadb_store import ChromaDBStore
        url = settings.vector_db_url
        if url:
            host, port = _split_host_port(url, default_port=8000)
            return ChromaDBStore(host=host, port=port)
        return ChromaDBStore(persist_path=str(settings.vector_db_path.expanduser()))

    if db_type == "qdrant":
        from capscan.rag.vector_store.qdrant_store import QdrantStore
        url = settings.vector_db_url
        if url:
            return QdrantStore(url=url, api_key=settings.vector_db_api_key or None)
        return QdrantStore(path=str(settings.vector_db_path.expanduser()))

    raise UnsupportedVectorStoreError(
        f"Unsupported vector store type: {db_type!r}. "
        f"Available: chromadb, qdrant"
    )


def _split_host_port(url: str, default_port: int) -> tuple[str, int]:
    """Parse 'scheme://host:port' or 'host:port' into (host, port)."""
    hostport = url.split("://", 1)[-1].split("/", 1)[0]
    if ":" in hostport:
        host, port = hostport.rsplit(":", 1)
        return host, int(port)
    return hostport, default_port
