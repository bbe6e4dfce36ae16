# src/scan/sqlite_session_store.py — v1
"""SQLite-based session store (SESSION_BACKEND=sqlite).

Uses stdlib sqlite3; one row per session, replaced wholesale on save.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from capscan.scan.errors import SessionStoreError
from capscan.scan.session_store import BaseSessionStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scan_sessions (
    session_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class SqliteSessionStore(BaseSessionStore):
    """SQLite-backed session store."""

    def __init__(self, db_path: Path | str) -> None:
        super().__init__()
        self._db_path = Path(db_path).expanduser()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise SessionStoreError(f"Cannot open session database {self._db_path}: {e}") from e

    async def _read(self, session_id: str) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT data FROM scan_sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise SessionStoreError(f"Failed to read session {session_id}: {e}") from e
        return None if row is None else row[0]

    async def _write(self, session_id: str, data: str) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """INSERT OR REPLACE INTO scan_sessions (session_id, data, updated_at)
                       VALUES (?, ?, CURRENT_TIMESTAMP)""",
                    (session_id, data),
                )
        except sqlite3.Error as e:
            raise SessionStoreError(f"Failed to write session {session_id}: {e}") from e

    async def _delete(self, session_id: str) -> bool:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM scan_sessions WHERE session_id = ?", (session_id,)
                )
        except sqlite3.Error as e:
            raise SessionStoreError(f"Failed to delete session {session_id}: {e}") from e
        return cursor.rowcount > 0

    async def _list_ids(self) -> list[str]:
        try:
            rows = self._conn.execute(
                "SELECT session_id FROM scan_sessions ORDER BY session_id"
            ).fetchall()
        except sqlite3.Error as e:
            raise SessionStoreError(f"Failed to list sessions: {e}") from e
        return [r[0] for r in rows]

    @property
    def backend_name(self) -> str:
        return "sqlite"

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
