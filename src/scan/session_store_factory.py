# src/scan/session_store_factory.py — v1
"""Factory for session store instantiation."""

from __future__ import annotations

from capscan.config.settings import Settings
from capscan.scan.session_store import BaseSessionStore


def create_session_store(settings: Settings) -> BaseSessionStore:
    """Instantiate the configured session backend under SESSION_DIR."""
    backend = settings.session_backend
    root = settings.sessions_path

    if backend == "json":
        from capscan.scan.json_session_store import JsonSessionStore
        return JsonSessionStore(root)

    if backend == "sqlite":
        from capscan.scan.sqlite_session_store import SqliteSessionStore
        return SqliteSessionStore(root / "sessions.db")

    raise ValueError(f"Unsupported session backend: {backend!r}")
