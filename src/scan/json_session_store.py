# src/scan/json_session_store.py — v1
"""JSON file-based session store (default SESSION_BACKEND=json).

One ``<session_id>.json`` file per session. Writes go to a temporary file
in the same directory and are moved into place with ``os.replace`` so a
crash mid-write never leaves a truncated record.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from capscan.scan.errors import SessionStoreError
from capscan.scan.session_store import BaseSessionStore

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class JsonSessionStore(BaseSessionStore):
    """File-based session store using one JSON file per session."""

    def __init__(self, root: Path | str) -> None:
        super().__init__()
        self._root = Path(root).expanduser()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionStoreError(f"Cannot create session directory {self._root}: {e}") from e

    @property
    def root(self) -> Path:
        return self._root

    async def _read(self, session_id: str) -> str | None:
        path = self._path(session_id)
        if path is None or not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise SessionStoreError(f"Failed to read session {session_id}: {e}") from e

    async def _write(self, session_id: str, data: str) -> None:
        path = self._path(session_id)
        if path is None:
            raise SessionStoreError(f"Invalid session id: {session_id!r}")
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._root,
                prefix=f".{session_id}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise SessionStoreError(f"Failed to write session {session_id}: {e}") from e

    async def _delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise SessionStoreError(f"Failed to delete session {session_id}: {e}") from e
        return True

    async def _list_ids(self) -> list[str]:
        return sorted(p.stem for p in self._root.glob("*.json"))

    @property
    def backend_name(self) -> str:
        return "json"

    def _path(self, session_id: str) -> Path | None:
        if not _SAFE_ID.match(session_id or ""):
            return None
        return self._root / f"{session_id}.json"
