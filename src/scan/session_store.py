# src/scan/session_store.py — v2
"""Abstract session store and session lifecycle helpers.

A session is persisted as one record, overwritten wholesale on every
mutation. ``save`` serialises writers per session ID and enforces the
lifecycle invariants before anything reaches the backend:

  * phases never move backwards;
  * a complete session is never rewritten;
  * the cursor never decreases;
  * an explicit selection, once set, never changes.
  * a live executor lease may only be renewed by its owner;
  * a stop request on a scanning record survives later writes.

Changelog:
    v2: lease and stop-request invariants; purge_expired sweep for
        finished and abandoned sessions.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from capscan.scan.errors import InvalidSessionTransition, SessionNotFound, SessionStoreError
from capscan.scan.models import (
    SESSION_ADAPTER,
    CompleteSession,
    ScanningSession,
    ScanSession,
    SelectingSession,
    SpecifyingSession,
)

logger = logging.getLogger(__name__)

SESSION_ID_PREFIX = "cap-scan"

_PHASE_ORDER = {"selecting": 0, "specifying": 1, "scanning": 2, "complete": 3}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id(now: datetime | None = None) -> str:
    """Opaque session token: ``cap-scan-<epoch ms>-<8 hex>``."""
    now = now or utcnow()
    return f"{SESSION_ID_PREFIX}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


def new_session(now: datetime | None = None) -> SelectingSession:
    """Fresh session waiting for the selection answer."""
    now = now or utcnow()
    return SelectingSession(
        session_id=new_session_id(now), started_at=now, last_activity=now
    )


def transition(
    session: ScanSession,
    target: type[Any],
    now: datetime | None = None,
    **fields: Any,
) -> ScanSession:
    """Build the ``target`` variant of a session, touching last_activity.

    Identity and start time carry over; phase-specific fields come from
    ``fields``. Validation runs on the new variant, so e.g. a cursor past the
    end of the selection is rejected here.
    """
    return target(
        session_id=session.session_id,
        started_at=session.started_at,
        last_activity=now or utcnow(),
        **fields,
    )


def check_transition(existing: ScanSession | None, new: ScanSession) -> None:
    """Raise InvalidSessionTransition if ``new`` may not replace ``existing``."""
    if existing is None:
        return
    sid = new.session_id
    if isinstance(existing, CompleteSession):
        raise InvalidSessionTransition(f"Session {sid} is complete and cannot be modified")
    if _PHASE_ORDER[new.phase] < _PHASE_ORDER[existing.phase]:
        raise InvalidSessionTransition(
            f"Session {sid} cannot move from {existing.phase} back to {new.phase}"
        )

    old_cursor = getattr(existing, "cursor", None)
    new_cursor = getattr(new, "cursor", None)
    if old_cursor is not None and new_cursor is not None and new_cursor < old_cursor:
        raise InvalidSessionTransition(
            f"Session {sid} cursor cannot decrease ({old_cursor} -> {new_cursor})"
        )

    old_sel = getattr(existing, "selection", None)
    new_sel = getattr(new, "selection", None)
    if isinstance(old_sel, list) and new_sel != old_sel:
        raise InvalidSessionTransition(f"Session {sid} selection is immutable once set")

    if isinstance(existing, ScanningSession) and isinstance(new, ScanningSession):
        holder = existing.lease_holder(new.last_activity)
        if holder is not None and (new.lease is None or new.lease.owner != holder):
            raise InvalidSessionTransition(
                f"Session {sid} is leased to executor {holder} until "
                f"{existing.lease.expires_at.isoformat()}"
            )


def carry_stop_request(existing: ScanSession | None, new: ScanSession) -> ScanSession:
    """Keep a pending stop request when a scanning record is rewritten."""
    if (
        isinstance(existing, ScanningSession)
        and existing.stop_requested
        and isinstance(new, ScanningSession)
        and not new.stop_requested
    ):
        return new.model_copy(update={"stop_requested": True})
    return new


class BaseSessionStore(ABC):
    """Keyed persistence of scan sessions, one record per session."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    # --- Backend primitives ---

    @abstractmethod
    async def _read(self, session_id: str) -> str | None:
        """Return the serialised record, or None if absent."""

    @abstractmethod
    async def _write(self, session_id: str, data: str) -> None:
        """Replace the serialised record."""

    @abstractmethod
    async def _delete(self, session_id: str) -> bool:
        """Remove the record; return whether it existed."""

    @abstractmethod
    async def _list_ids(self) -> list[str]:
        """IDs of all stored sessions."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier (json, sqlite)."""

    # --- Public API ---

    async def get(self, session_id: str) -> ScanSession | None:
        """Load a session, or None if it does not exist."""
        raw = await self._read(session_id)
        if raw is None:
            return None
        try:
            return SESSION_ADAPTER.validate_json(raw)
        except ValidationError as e:
            raise SessionStoreError(f"Corrupt session record {session_id}: {e}") from e

    async def load(self, session_id: str) -> ScanSession:
        """Load a session.

        Raises:
            SessionNotFound: No record for this ID.
            SessionStoreError: Record unreadable or corrupt.
        """
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def save(self, session: ScanSession) -> None:
        """Persist a session, replacing the previous record wholesale.

        Raises:
            InvalidSessionTransition: The write would break lifecycle invariants.
            SessionStoreError: Backend I/O failed.
        """
        async with self._lock_for(session.session_id):
            existing = await self.get(session.session_id)
            check_transition(existing, session)
            session = carry_stop_request(existing, session)
            data = SESSION_ADAPTER.dump_json(session, by_alias=True).decode("utf-8")
            await self._write(session.session_id, data)
        logger.debug(
            "Saved session %s (phase=%s)", session.session_id, session.phase
        )

    async def delete(self, session_id: str) -> bool:
        """Delete a session record; return whether it existed."""
        async with self._lock_for(session_id):
            deleted = await self._delete(session_id)
        self._locks.pop(session_id, None)
        if deleted:
            logger.info("Deleted session %s", session_id)
        return deleted

    async def delete_after(self, session_id: str, delay_s: float) -> None:
        """Delete a session once ``delay_s`` has elapsed."""
        await asyncio.sleep(delay_s)
        try:
            await self.delete(session_id)
        except SessionStoreError as e:
            logger.warning("Cleanup of session %s failed: %s", session_id, e)

    async def list_sessions(self) -> list[ScanSession]:
        """All readable sessions; corrupt records are skipped with a warning."""
        sessions: list[ScanSession] = []
        for session_id in await self._list_ids():
            try:
                session = await self.get(session_id)
            except SessionStoreError as e:
                logger.warning("Skipping unreadable session %s: %s", session_id, e)
                continue
            if session is not None:
                sessions.append(session)
        return sessions

    async def latest(self) -> ScanSession | None:
        """Most recently active session, or None if there are none."""
        sessions = await self.list_sessions()
        if not sessions:
            return None
        return max(sessions, key=lambda s: (s.last_activity, s.started_at))

    async def purge_expired(
        self,
        complete_after_s: float,
        idle_after_s: float,
        now: datetime | None = None,
    ) -> list[str]:
        """Delete finished and abandoned sessions; return the deleted IDs.

        A complete session goes once ``complete_after_s`` has passed since its
        final write, a selecting or specifying session once ``idle_after_s``
        has passed since its last step. Scanning sessions are always kept so
        they can still be resumed.
        """
        now = now or utcnow()
        purged: list[str] = []
        for session in await self.list_sessions():
            if isinstance(session, CompleteSession):
                ttl = complete_after_s
            elif isinstance(session, (SelectingSession, SpecifyingSession)):
                ttl = idle_after_s
            else:
                continue
            if (now - session.last_activity).total_seconds() < ttl:
                continue
            if await self.delete(session.session_id):
                purged.append(session.session_id)
        if purged:
            logger.info("Purged %d expired session(s)", len(purged))
        return purged

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock
