# tests/unit/scan/test_unit_session_store.py — v2
"""Tests for the session stores — JSON files and SQLite, lifecycle invariants."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from capscan.config.settings import Settings
from capscan.scan.errors import InvalidSessionTransition, SessionNotFound, SessionStoreError
from capscan.scan.json_session_store import JsonSessionStore
from capscan.scan.models import (
    CompleteSession,
    ExecutorLease,
    ScanningSession,
    SpecifyingSession,
)
from capscan.scan.progress import build_progress
from capscan.scan.session_store import new_session, new_session_id, transition
from capscan.scan.session_store_factory import create_session_store
from capscan.scan.sqlite_session_store import SqliteSessionStore

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["json", "sqlite"])
def store(request, tmp_path):
    if request.param == "json":
        return JsonSessionStore(tmp_path / "sessions")
    return SqliteSessionStore(tmp_path / "sessions.db")


def _complete(session, cursor=1, stopped=False):
    progress = build_progress(T0, T0, current=cursor, total=cursor, successful=cursor,
                              failed=0, recent_errors=[], status="completed")
    return transition(session, CompleteSession, T0, selection=["A"] * cursor,
                      cursor=cursor, progress=progress, stopped=stopped)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestSessionIds:
    def test_format(self):
        sid = new_session_id(T0)
        assert re.fullmatch(r"cap-scan-\d{13}-[0-9a-f]{8}", sid)
        assert sid.startswith(f"cap-scan-{int(T0.timestamp() * 1000)}-")

    def test_unique(self):
        assert new_session_id(T0) != new_session_id(T0)

    def test_new_session_is_selecting(self):
        s = new_session(T0)
        assert s.phase == "selecting"
        assert s.started_at == s.last_activity == T0


# ---------------------------------------------------------------------------
# Basic persistence (both backends)
# ---------------------------------------------------------------------------

class TestSessionStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        s = new_session(T0)
        await store.save(s)
        loaded = await store.load(s.session_id)
        assert loaded == s

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("cap-scan-0-deadbeef") is None

    @pytest.mark.asyncio
    async def test_load_missing_raises(self, store):
        with pytest.raises(SessionNotFound, match="Session not found"):
            await store.load("cap-scan-0-deadbeef")

    @pytest.mark.asyncio
    async def test_save_replaces_wholesale(self, store):
        s = new_session(T0)
        await store.save(s)
        scanning = transition(s, ScanningSession, T0 + timedelta(seconds=1), selection="all")
        await store.save(scanning)
        loaded = await store.load(s.session_id)
        assert isinstance(loaded, ScanningSession)
        assert loaded.selection == "all"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        s = new_session(T0)
        await store.save(s)
        assert await store.delete(s.session_id) is True
        assert await store.get(s.session_id) is None
        assert await store.delete(s.session_id) is False

    @pytest.mark.asyncio
    async def test_delete_after(self, store):
        s = new_session(T0)
        await store.save(s)
        await store.delete_after(s.session_id, 0)
        assert await store.get(s.session_id) is None

    @pytest.mark.asyncio
    async def test_latest_by_last_activity(self, store):
        older = new_session(T0)
        newer = new_session(T0)
        await store.save(older)
        await store.save(newer)
        await store.save(transition(older, SpecifyingSession, T0 + timedelta(minutes=5)))
        latest = await store.latest()
        assert latest.session_id == older.session_id

    @pytest.mark.asyncio
    async def test_latest_empty(self, store):
        assert await store.latest() is None

    @pytest.mark.asyncio
    async def test_list_sessions(self, store):
        for _ in range(3):
            await store.save(new_session(T0))
        assert len(await store.list_sessions()) == 3


# ---------------------------------------------------------------------------
# Lifecycle invariants
# ---------------------------------------------------------------------------

class TestTransitions:
    @pytest.mark.asyncio
    async def test_phase_cannot_move_back(self, store):
        s = new_session(T0)
        await store.save(transition(s, SpecifyingSession, T0))
        with pytest.raises(InvalidSessionTransition, match="back"):
            await store.save(s)

    @pytest.mark.asyncio
    async def test_complete_is_terminal(self, store):
        s = new_session(T0)
        await store.save(s)
        await store.save(_complete(s))
        with pytest.raises(InvalidSessionTransition, match="complete"):
            await store.save(_complete(s))

    @pytest.mark.asyncio
    async def test_cursor_cannot_decrease(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"], cursor=2)
        await store.save(s)
        with pytest.raises(InvalidSessionTransition, match="cursor"):
            await store.save(transition(s, ScanningSession, T0, selection=["A", "B"], cursor=1))

    @pytest.mark.asyncio
    async def test_selection_immutable(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"])
        await store.save(s)
        with pytest.raises(InvalidSessionTransition, match="selection"):
            await store.save(transition(s, ScanningSession, T0, selection=["A", "C"]))

    @pytest.mark.asyncio
    async def test_all_may_resolve_to_list(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection="all")
        await store.save(s)
        await store.save(transition(s, ScanningSession, T0, selection=["A", "B"]))
        loaded = await store.load(s.session_id)
        assert loaded.selection == ["A", "B"]

    @pytest.mark.asyncio
    async def test_rejected_write_leaves_record_untouched(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"], cursor=2)
        await store.save(s)
        with pytest.raises(InvalidSessionTransition):
            await store.save(transition(s, ScanningSession, T0, selection=["A", "B"], cursor=0))
        assert (await store.load(s.session_id)).cursor == 2


# ---------------------------------------------------------------------------
# Executor leases and stop requests
# ---------------------------------------------------------------------------

def _lease(owner, expires_at):
    return ExecutorLease(owner=owner, heartbeat_at=T0, expires_at=expires_at)


class TestLeaseAndStopRequest:
    @pytest.mark.asyncio
    async def test_live_lease_blocks_other_owner(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"],
                       lease=_lease("host-a", T0 + timedelta(minutes=10)))
        await store.save(s)
        takeover = transition(s, ScanningSession, T0 + timedelta(seconds=5),
                              selection=["A", "B"],
                              lease=_lease("host-b", T0 + timedelta(minutes=20)))
        with pytest.raises(InvalidSessionTransition, match="leased to executor host-a"):
            await store.save(takeover)

    @pytest.mark.asyncio
    async def test_owner_renews_lease(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"],
                       lease=_lease("host-a", T0 + timedelta(minutes=10)))
        await store.save(s)
        renewed = transition(s, ScanningSession, T0 + timedelta(minutes=1),
                             selection=["A", "B"], cursor=1,
                             lease=_lease("host-a", T0 + timedelta(minutes=11)))
        await store.save(renewed)
        assert (await store.load(s.session_id)).lease.expires_at == T0 + timedelta(minutes=11)

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken_over(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"],
                       lease=_lease("host-a", T0 + timedelta(minutes=10)))
        await store.save(s)
        later = T0 + timedelta(minutes=11)
        takeover = transition(s, ScanningSession, later, selection=["A", "B"],
                              lease=_lease("host-b", later + timedelta(minutes=10)))
        await store.save(takeover)
        assert (await store.load(s.session_id)).lease.owner == "host-b"

    @pytest.mark.asyncio
    async def test_stop_request_survives_rewrite(self, store):
        s = transition(new_session(T0), ScanningSession, T0, selection=["A", "B"],
                       stop_requested=True)
        await store.save(s)
        await store.save(transition(s, ScanningSession, T0, selection=["A", "B"], cursor=1))
        stored = await store.load(s.session_id)
        assert stored.cursor == 1
        assert stored.stop_requested is True


# ---------------------------------------------------------------------------
# Expiry sweep
# ---------------------------------------------------------------------------

class TestPurgeExpired:
    @pytest.mark.asyncio
    async def test_purges_old_complete_and_abandoned(self, store):
        done = new_session(T0)
        await store.save(done)
        await store.save(_complete(done))
        abandoned = transition(new_session(T0), SpecifyingSession, T0)
        await store.save(abandoned)
        scanning = transition(new_session(T0), ScanningSession, T0, selection=["A"])
        await store.save(scanning)

        purged = await store.purge_expired(
            complete_after_s=30, idle_after_s=3600, now=T0 + timedelta(hours=2),
        )

        assert sorted(purged) == sorted([done.session_id, abandoned.session_id])
        assert [s.session_id for s in await store.list_sessions()] == [scanning.session_id]

    @pytest.mark.asyncio
    async def test_keeps_recent_sessions(self, store):
        done = new_session(T0)
        await store.save(done)
        await store.save(_complete(done))
        idle = new_session(T0)
        await store.save(idle)

        purged = await store.purge_expired(
            complete_after_s=30, idle_after_s=3600, now=T0 + timedelta(seconds=10),
        )

        assert purged == []
        assert len(await store.list_sessions()) == 2

    @pytest.mark.asyncio
    async def test_idle_ttl_separate_from_complete(self, store):
        done = new_session(T0)
        await store.save(done)
        await store.save(_complete(done))
        idle = new_session(T0)
        await store.save(idle)

        purged = await store.purge_expired(
            complete_after_s=30, idle_after_s=3600, now=T0 + timedelta(minutes=5),
        )

        assert purged == [done.session_id]


# ---------------------------------------------------------------------------
# JSON backend specifics
# ---------------------------------------------------------------------------

class TestJsonSessionStore:
    @pytest.mark.asyncio
    async def test_one_file_per_session(self, tmp_path):
        store = JsonSessionStore(tmp_path)
        s = new_session(T0)
        await store.save(s)
        path = tmp_path / f"{s.session_id}.json"
        assert path.exists()
        assert '"sessionId"' in path.read_text(encoding="utf-8")
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_unsafe_id_not_found(self, tmp_path):
        store = JsonSessionStore(tmp_path)
        assert await store.get("../../etc/passwd") is None

    @pytest.mark.asyncio
    async def test_corrupt_record(self, tmp_path):
        store = JsonSessionStore(tmp_path)
        (tmp_path / "cap-scan-1-abcdef01.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(SessionStoreError, match="Corrupt"):
            await store.get("cap-scan-1-abcdef01")

    @pytest.mark.asyncio
    async def test_list_skips_corrupt(self, tmp_path):
        store = JsonSessionStore(tmp_path)
        await store.save(new_session(T0))
        (tmp_path / "cap-scan-1-abcdef01.json").write_text("[]", encoding="utf-8")
        assert len(await store.list_sessions()) == 1

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        s = new_session(T0)
        await JsonSessionStore(tmp_path).save(s)
        assert await JsonSessionStore(tmp_path).load(s.session_id) == s


class TestSessionStoreFactory:
    def test_json_backend(self, tmp_path):
        s = Settings(_env_file=None, session_dir=tmp_path)
        store = create_session_store(s)
        assert store.backend_name == "json"
        assert store.root == tmp_path / "capability-sessions"

    def test_sqlite_backend(self, tmp_path):
        s = Settings(_env_file=None, session_dir=tmp_path, session_backend="sqlite")
        store = create_session_store(s)
        assert store.backend_name == "sqlite"
        assert (tmp_path / "capability-sessions" / "sessions.db").exists()
        store.close()
