# tests/unit/api/test_unit_facade.py — v2
"""Tests for api/facade.py — end-to-end workflow through the service facade."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from capscan.api.facade import CapabilityScanService, build_scan_service, error_response
from capscan.config.settings import Settings
from capscan.scan.errors import (
    DependencyUnavailable,
    ScanAlreadyRunning,
    SessionNotFound,
    StepValidationError,
)
from capscan.scan.models import CompleteSession, CompletionResponse, ScanningSession
from capscan.scan.progress import build_progress
from capscan.scan.session_store import new_session, transition

LONG_AGO = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, session_dir=tmp_path, session_cleanup_delay_s=3600)


@pytest.fixture
def service(settings, session_store, fake_discovery, mock_llm_client, vector_store, embedder):
    return build_scan_service(
        settings,
        store=session_store,
        discovery=fake_discovery,
        llm=mock_llm_client,
        vector_store=vector_store,
        embedder=embedder,
    )


# ---------------------------------------------------------------------------
# Wire-level workflow
# ---------------------------------------------------------------------------

class TestHandleStep:
    @pytest.mark.asyncio
    async def test_specific_flow_end_to_end(self, service, fake_discovery):
        fake_discovery.broken = {"B"}

        pause = await service.handle_step({})
        assert pause["kind"] == "pause"
        assert pause["phase"] == "selecting"
        sid = pause["sessionId"]
        assert pause["requiredNextCall"]["sessionId"] == sid

        spec = await service.handle_step({"sessionId": sid, "phase": "selecting", "response": "2"})
        assert spec["phase"] == "specifying"

        started = await service.handle_step(
            {"sessionId": sid, "phase": "specifying", "resourceList": "A, B, C"}
        )
        assert started["kind"] == "started"
        assert started["total"] == 3
        assert started["checkProgress"]["sessionId"] == sid

        done = await service.wait(sid)
        assert isinstance(done, CompletionResponse)
        assert done.summary.total_scanned == 3
        assert done.summary.successful == 2
        assert done.summary.failed == 1

        again = await service.handle_step({"sessionId": sid, "phase": "scanning"})
        assert again["kind"] == "already_complete"
        assert await service.index.count() == 2
        await service.close()

    @pytest.mark.asyncio
    async def test_all_shortcut(self, service):
        started = await service.handle_step({"response": "all"})
        assert started["kind"] == "started"
        assert "total" not in started
        done = await service.wait(started["sessionId"])
        assert done.summary.total_scanned == 3
        progress = await service.progress(started["sessionId"])
        assert progress.phase == "complete"
        assert progress.progress.percentage == 100
        await service.close()

    @pytest.mark.asyncio
    async def test_phase_mismatch_rendered(self, service):
        pause = await service.handle_step({})
        sid = pause["sessionId"]
        await service.handle_step({"sessionId": sid, "phase": "selecting", "response": "specific"})

        err = await service.handle_step({"sessionId": sid, "phase": "scanning"})

        assert err["kind"] == "error"
        assert err["error"] == "validation_error"
        assert err["expectedPhase"] == "specifying"
        assert err["requiredNextCall"]["phase"] == "specifying"
        assert "specifying" in err["message"]

    @pytest.mark.asyncio
    async def test_unknown_session(self, service):
        err = await service.handle_step({"sessionId": "cap-scan-1-deadbeef", "phase": "selecting"})
        assert err["error"] == "session_not_found"
        assert "without a sessionId" in err["message"]

    @pytest.mark.asyncio
    async def test_malformed_payload(self, service):
        err = await service.handle_step({"stop": "maybe"})
        assert err["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unconfigured_llm(self, service, mock_llm_client):
        mock_llm_client.is_configured = False
        err = await service.handle_step({"response": "all"})
        assert err["error"] == "dependency_unavailable"

    @pytest.mark.asyncio
    async def test_wait_without_run(self, service):
        pause = await service.handle_step({})
        assert await service.wait(pause["sessionId"]) is None

    @pytest.mark.asyncio
    async def test_wait_after_run_reads_store(self, service):
        started = await service.handle_step({"response": "all"})
        sid = started["sessionId"]
        await service.wait(sid)

        again = await service.wait(sid)

        assert again.summary.total_scanned == 3
        assert service.executor.is_running(sid) is False
        await service.close()


# ---------------------------------------------------------------------------
# Expired session sweep
# ---------------------------------------------------------------------------

class TestSessionSweep:
    @pytest.mark.asyncio
    async def test_first_call_purges_expired_sessions(self, service, session_store):
        finished = new_session(LONG_AGO)
        progress = build_progress(LONG_AGO, LONG_AGO, current=1, total=1, successful=1,
                                  failed=0, recent_errors=[], status="completed")
        await session_store.save(transition(finished, CompleteSession, LONG_AGO,
                                            selection=["A"], cursor=1, progress=progress))
        abandoned = new_session(LONG_AGO)
        await session_store.save(abandoned)
        resumable = transition(new_session(LONG_AGO), ScanningSession, LONG_AGO,
                               selection=["A", "B"], cursor=1)
        await session_store.save(resumable)

        resp = await service.progress(resumable.session_id)

        assert resp.phase == "scanning"
        remaining = [s.session_id for s in await session_store.list_sessions()]
        assert remaining == [resumable.session_id]

    @pytest.mark.asyncio
    async def test_recent_sessions_kept(self, service, session_store):
        pause = await service.handle_step({})
        assert await session_store.get(pause["sessionId"]) is not None
        assert await service.purge_expired_sessions() == []


# ---------------------------------------------------------------------------
# Capability queries
# ---------------------------------------------------------------------------

class TestQueries:
    @pytest.mark.asyncio
    async def test_search_get_list_delete(self, service, record_factory):
        record = record_factory("SQL.devopstoolkit.live")
        await service.index.store(record)
        await service.index.store(record_factory("Service", complexity="high"))

        matches = await service.search("database", complexity="low")
        assert [m.capability.resource_name for m in matches] == ["SQL.devopstoolkit.live"]

        resp = await service.search_response(query="database", limit=5)
        assert resp.count == 2

        assert (await service.get_capability(record.id)).resource_name == record.resource_name
        assert (await service.get_capability("Service")).complexity == "high"

        listing = await service.list_capabilities()
        assert listing.count == 2

        assert await service.delete_capability("Service") is True
        assert await service.delete_capability("Service") is False
        assert (await service.list_capabilities()).count == 1

    @pytest.mark.asyncio
    async def test_delete_all_capabilities(self, service, record_factory):
        for name in ("A", "B"):
            await service.index.store(record_factory(name))
        assert await service.delete_all_capabilities() == 2
        assert (await service.list_capabilities()).count == 0

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, service):
        with pytest.raises(ValueError):
            await service.search("   ")


class TestErrorResponse:
    def test_validation_error(self):
        resp = error_response(StepValidationError(
            "wrong phase", expected_phase="selecting", session_id="s",
            required_next_call={"sessionId": "s", "phase": "selecting"},
        ))
        wire = resp.to_wire()
        assert wire["expectedPhase"] == "selecting"
        assert wire["requiredNextCall"]["phase"] == "selecting"

    def test_dependency_error(self):
        assert error_response(DependencyUnavailable("no key")).error == "dependency_unavailable"

    def test_not_found(self):
        assert error_response(SessionNotFound("x")).session_id == "x"

    def test_already_running(self):
        resp = error_response(ScanAlreadyRunning("s", owner="host-b-12-abcdef"))
        assert resp.error == "scan_already_running"
        assert "host-b-12-abcdef" in resp.message

    def test_service_type(self, service):
        assert isinstance(service, CapabilityScanService)
