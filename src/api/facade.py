# src/api/facade.py — v2
"""Public API facade — single entry point for capability scans and queries.

Usage:
    from capscan.api.facade import build_scan_service
    service = build_scan_service(settings)
    response = await service.step(StepRequest())

Every collaborator is constructed explicitly in ``build_scan_service`` and
passed in; tests build a service around fakes the same way.

The first workflow call of a service sweeps expired sessions from the
store, so finished and abandoned sessions are cleaned up even when no
process lives long enough to run the delayed in-process cleanup.

Changelog:
    v2: expired-session sweep, delete_all_capabilities, executor lease TTL.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from capscan.api.models import CapabilityListResponse, SearchRequest, SearchResponse
from capscan.capability.index import CapabilityIndex
from capscan.capability.models import CapabilityMatch
from capscan.config.settings import Settings
from capscan.scan.errors import (
    DependencyUnavailable,
    ScanAlreadyRunning,
    ScanError,
    SelectionResolutionFailed,
    SessionNotFound,
    SessionStoreError,
    StepValidationError,
)
from capscan.scan.executor import BatchExecutor
from capscan.scan.inference import ItemInferenceAdapter
from capscan.scan.models import (
    CapabilityRecord,
    CompleteSession,
    CompletionResponse,
    ErrorResponse,
    ProgressResponse,
    StepRequest,
    WorkflowResponse,
)
from capscan.scan.progress import completion_summary
from capscan.scan.router import StepRouter
from capscan.scan.session_store import BaseSessionStore

if TYPE_CHECKING:
    from capscan.discovery.base_discovery import BaseResourceDiscovery
    from capscan.llm.base_client import BaseLLMClient
    from capscan.rag.embeddings.base_embedder import BaseEmbedder
    from capscan.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

_ERROR_CODES: list[tuple[type[Exception], str]] = [
    (StepValidationError, "validation_error"),
    (SessionNotFound, "session_not_found"),
    (DependencyUnavailable, "dependency_unavailable"),
    (SelectionResolutionFailed, "selection_resolution_failed"),
    (ScanAlreadyRunning, "scan_already_running"),
    (SessionStoreError, "session_store_error"),
    (ScanError, "scan_error"),
]


class CapabilityScanService:
    """Scan workflow plus capability queries behind one object."""

    def __init__(
        self,
        store: BaseSessionStore,
        executor: BatchExecutor,
        index: CapabilityIndex,
        router: StepRouter | None = None,
        complete_ttl_s: float | None = None,
        idle_ttl_s: float | None = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self.index = index
        self.router = router or StepRouter(store, executor)
        self._complete_ttl_s = complete_ttl_s
        self._idle_ttl_s = idle_ttl_s
        self._swept = False

    # --- Scan workflow ---

    async def step(self, request: StepRequest | dict[str, Any]) -> WorkflowResponse:
        """One step call; typed errors propagate."""
        if isinstance(request, dict):
            request = StepRequest.model_validate(request)
        await self._sweep_once()
        return await self.router.route(request)

    async def handle_step(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Wire-level step call: camelCase dict in, camelCase dict out.

        Caller errors come back as an ErrorResponse naming the expected
        next call instead of raising.
        """
        try:
            request = StepRequest.model_validate(payload)
        except ValidationError as e:
            return ErrorResponse(error="validation_error", message=str(e)).to_wire()
        try:
            await self._sweep_once()
            response = await self.router.route(request)
        except ScanError as e:
            return error_response(e).to_wire()
        return response.to_wire()

    async def progress(self, session_id: str | None = None) -> ProgressResponse:
        await self._sweep_once()
        return await self.router.progress(session_id)

    async def stop(self, session_id: str) -> WorkflowResponse:
        await self._sweep_once()
        return await self.router.stop(session_id)

    async def wait(self, session_id: str) -> CompletionResponse | None:
        """Block until the session's executor finishes; None if still open."""
        summary = await self.executor.wait(session_id)
        if summary is None:
            session = await self.store.get(session_id)
            if not isinstance(session, CompleteSession):
                return None
            summary = completion_summary(session.progress, session.stopped, session.error)
        return CompletionResponse(
            session_id=session_id, summary=summary, stopped=summary.stopped
        )

    # --- Capability queries ---

    async def search(
        self,
        query: str,
        limit: int = 10,
        complexity: str | None = None,
        provider: str | None = None,
    ) -> list[CapabilityMatch]:
        req = SearchRequest(
            query=query, limit=limit, complexity=complexity, provider=provider
        )
        return await self.index.search(
            req.query, limit=req.limit, complexity=req.complexity, provider=req.provider
        )

    async def search_response(self, **kwargs: Any) -> SearchResponse:
        results = await self.search(**kwargs)
        return SearchResponse(query=kwargs["query"], count=len(results), results=results)

    async def get_capability(self, id_or_name: str) -> CapabilityRecord | None:
        """Look up by capability ID or by resource name."""
        if _UUID_RE.match(id_or_name):
            return await self.index.get(id_or_name)
        return await self.index.get_by_name(id_or_name)

    async def list_capabilities(self, limit: int = 100) -> CapabilityListResponse:
        records = await self.index.list_records(limit)
        return CapabilityListResponse(count=len(records), capabilities=records)

    async def delete_capability(self, id_or_name: str) -> bool:
        """Delete a stored capability; False if it did not exist."""
        record = await self.get_capability(id_or_name)
        if record is None:
            return False
        await self.index.delete(record.id)
        return True

    async def delete_all_capabilities(self) -> int:
        """Empty the capability index; return how many records were removed."""
        return await self.index.delete_all()

    # --- Session housekeeping ---

    async def purge_expired_sessions(self) -> list[str]:
        """Delete complete and abandoned sessions past their retention."""
        if self._complete_ttl_s is None or self._idle_ttl_s is None:
            return []
        return await self.store.purge_expired(self._complete_ttl_s, self._idle_ttl_s)

    async def _sweep_once(self) -> None:
        if self._swept:
            return
        self._swept = True
        try:
            await self.purge_expired_sessions()
        except SessionStoreError as e:
            logger.warning("Session sweep failed: %s", e)

    async def close(self) -> None:
        await self.executor.close()


def error_response(exc: ScanError) -> ErrorResponse:
    """Render a scan error for the caller."""
    code = next(c for cls, c in _ERROR_CODES if isinstance(exc, cls))
    if isinstance(exc, StepValidationError):
        return ErrorResponse(
            error=code,
            message=str(exc),
            session_id=exc.session_id,
            expected_phase=exc.expected_phase,
            required_next_call=exc.required_next_call,
        )
    if isinstance(exc, SessionNotFound):
        return ErrorResponse(
            error=code,
            message=f"{exc}. Start a new session by calling without a sessionId.",
            session_id=exc.session_id,
        )
    return ErrorResponse(error=code, message=str(exc))


def build_scan_service(
    settings: Settings | None = None,
    *,
    store: BaseSessionStore | None = None,
    discovery: BaseResourceDiscovery | None = None,
    llm: BaseLLMClient | None = None,
    vector_store: BaseVectorStore | None = None,
    embedder: BaseEmbedder | None = None,
) -> CapabilityScanService:
    """Composition root: construct every collaborator from settings.

    Any collaborator passed explicitly is used as-is.
    """
    settings = settings or Settings()

    if store is None:
        from capscan.scan.session_store_factory import create_session_store
        store = create_session_store(settings)
    if discovery is None:
        from capscan.discovery.discovery_factory import create_discovery
        discovery = create_discovery(settings)
    if llm is None:
        from capscan.llm.client_factory import create_llm_client_from_settings
        llm = create_llm_client_from_settings(settings)
    if vector_store is None:
        from capscan.rag.vector_store.vector_store_factory import create_vector_store
        vector_store = create_vector_store(settings)
    if embedder is None:
        from capscan.rag.embeddings.embedder_factory import create_embedder
        embedder = create_embedder(settings)

    index = CapabilityIndex(vector_store, embedder, settings.capability_collection)
    adapter = ItemInferenceAdapter(
        discovery,
        llm,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
    executor = BatchExecutor(
        store,
        adapter,
        index,
        discovery,
        cleanup_delay_s=settings.session_cleanup_delay_s,
        recent_errors_limit=settings.scan_recent_errors_limit,
        max_persist_failures=settings.scan_max_persist_failures,
        lease_ttl_s=settings.scan_lease_ttl_s,
    )
    logger.debug(
        "Built scan service: store=%s, discovery=%s, llm=%s, vector_store=%s",
        store.backend_name, discovery.provider_name, llm.provider_name,
        vector_store.provider_name,
    )
    return CapabilityScanService(
        store,
        executor,
        index,
        complete_ttl_s=settings.session_cleanup_delay_s,
        idle_ttl_s=settings.session_idle_ttl_s,
    )
