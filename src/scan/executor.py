# src/scan/executor.py — v2
"""Batch executor: processes a scanning session item by item.

Runs detached from the request that started it. Items are processed
strictly in order from the persisted cursor; after every item the session
record is replaced with a new snapshot and ``cursor = i + 1``, so a restart
resumes at the first item not yet attempted.

Every snapshot also renews an ``ExecutorLease`` naming this executor, so
other processes sharing the store see the run as live until the lease
expires. A single item must finish within ``lease_ttl_s``.

Failure policy:
  * any error while inferring or indexing one item is recorded against that
    item and the loop moves on;
  * failing to resolve the ``all`` selection aborts the scan;
  * session writes may fail transiently, but ``max_persist_failures``
    consecutive failures abort the scan.

An aborted scan is persisted as a complete session with progress status
``failed`` whenever the store allows it.

Changelog:
    v2: executor lease with heartbeat on every snapshot; a live lease held
        by another executor refuses the run; stop requests persisted by
        other processes are honoured; finished tasks leave ``_tasks``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta
from functools import partial
from typing import Callable

from capscan.capability.index import CapabilityIndex
from capscan.capability.models import generate_capability_id
from capscan.discovery.base_discovery import BaseResourceDiscovery, DiscoveryError
from capscan.logging.context import set_item_context, set_session_context
from capscan.scan.errors import (
    InvalidSessionTransition,
    ScanAlreadyRunning,
    ScanError,
    SelectionResolutionFailed,
    SessionStoreError,
    StepValidationError,
)
from capscan.scan.inference import ItemInferenceAdapter
from capscan.scan.models import (
    CompleteSession,
    CompletionSummary,
    ExecutorLease,
    ItemError,
    ProgressSnapshot,
    ProgressStatus,
    ScanningSession,
    ScanSession,
)
from capscan.scan.progress import (
    DEFAULT_ERROR_WINDOW,
    build_progress,
    completion_summary,
    trim_errors,
)
from capscan.scan.session_store import BaseSessionStore, transition, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL_S = 600.0


def default_owner_id() -> str:
    """``<host>-<pid>-<6 hex>``: unique per executor instance."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class _RunState:
    """Mutable counters of one executor run."""

    def __init__(self, session: ScanningSession, run_start: datetime) -> None:
        prev = session.progress
        self.session = session
        self.items: list[str] = list(session.selection) if session.is_resolved else []
        self.run_start = run_start
        self.scan_started_at = prev.started_at if prev else run_start
        self.baseline = session.cursor
        self.cursor = session.cursor
        self.successful = prev.successful if prev else 0
        self.failed = prev.failed if prev else 0
        self.errors: list[ItemError] = list(prev.recent_errors) if prev else []


class BatchExecutor:
    """Runs at most one scan per session ID at a time."""

    def __init__(
        self,
        store: BaseSessionStore,
        adapter: ItemInferenceAdapter,
        index: CapabilityIndex,
        discovery: BaseResourceDiscovery,
        cleanup_delay_s: float = 30.0,
        recent_errors_limit: int = DEFAULT_ERROR_WINDOW,
        max_persist_failures: int = 3,
        lease_ttl_s: float = DEFAULT_LEASE_TTL_S,
        owner_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._index = index
        self._discovery = discovery
        self._cleanup_delay_s = cleanup_delay_s
        self._error_limit = recent_errors_limit
        self._max_persist_failures = max_persist_failures
        self._lease_ttl = timedelta(seconds=lease_ttl_s)
        self._clock = clock
        self.owner_id = owner_id or default_owner_id()

        self._active: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_events: dict[str, asyncio.Event] = {}
        self._cleanup_tasks: set[asyncio.Task] = set()
        self._persist_failures: dict[str, int] = {}

    # --- Control surface ---

    def preflight(self) -> str | None:
        """Reason scanning cannot start, or None."""
        return self._adapter.preflight()

    def is_running(self, session_id: str) -> bool:
        return session_id in self._active

    def start(self, session_id: str) -> bool:
        """Launch ``run`` as a detached task; False if one is already active."""
        if session_id in self._active:
            logger.debug("Executor already active for %s", session_id)
            return False
        self._active.add(session_id)
        task = asyncio.create_task(
            self._run_reserved(session_id), name=f"capscan-scan-{session_id}"
        )
        self._tasks[session_id] = task
        task.add_done_callback(partial(self._on_task_done, session_id))
        return True

    async def run(self, session_id: str) -> CompletionSummary:
        """Process the session to a terminal state in the current task.

        Raises:
            ScanAlreadyRunning: Another run is active for this session.
            SelectionResolutionFailed: ``all`` could not be resolved.
            SessionStoreError: Progress could not be persisted.
        """
        if session_id in self._active:
            raise ScanAlreadyRunning(session_id)
        self._active.add(session_id)
        return await self._run_reserved(session_id)

    def request_stop(self, session_id: str) -> bool:
        """Ask a running scan to stop before its next item."""
        if session_id not in self._active:
            return False
        self._stop_event(session_id).set()
        return True

    async def wait(self, session_id: str) -> CompletionSummary | None:
        """Await a task launched by ``start``; None if there is none.

        Finished tasks are forgotten, so callers that arrive after the run
        ended get None and read the terminal state from the store.
        """
        task = self._tasks.get(session_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def close(self) -> None:
        """Cancel pending cleanups (used on shutdown)."""
        for task in list(self._cleanup_tasks):
            task.cancel()
        self._cleanup_tasks.clear()

    # --- Run loop ---

    async def _run_reserved(self, session_id: str) -> CompletionSummary:
        set_session_context(session_id, "scanning")
        try:
            return await self._execute(session_id)
        finally:
            set_item_context(None)
            self._active.discard(session_id)
            self._stop_events.pop(session_id, None)
            self._persist_failures.pop(session_id, None)

    async def _execute(self, session_id: str) -> CompletionSummary:
        session = await self._store.load(session_id)
        if isinstance(session, CompleteSession):
            return completion_summary(session.progress, session.stopped, session.error)
        if not isinstance(session, ScanningSession):
            raise StepValidationError(
                f"Session {session_id} is in phase {session.phase!r}, not scanning",
                expected_phase=session.phase,
                session_id=session_id,
            )

        now = self._clock()
        holder = session.lease_holder(now)
        if holder is not None and holder != self.owner_id:
            raise ScanAlreadyRunning(session_id, owner=holder)

        state = _RunState(session, now)
        try:
            await self._claim(state)
            if not session.is_resolved:
                await self._resolve_selection(state)
            return await self._process_items(state)
        except SelectionResolutionFailed:
            raise
        except InvalidSessionTransition:
            stored = await self._store.get(session_id)
            if isinstance(stored, CompleteSession):
                # Finalized by another process (e.g. an idle stop); yield to it.
                logger.warning("Session %s was finalized elsewhere; halting run", session_id)
                return completion_summary(stored.progress, stored.stopped, stored.error)
            if isinstance(stored, ScanningSession):
                holder = stored.lease_holder(self._clock())
                if holder is not None and holder != self.owner_id:
                    logger.warning(
                        "Session %s is leased to executor %s; halting run", session_id, holder
                    )
                    raise ScanAlreadyRunning(session_id, owner=holder)
            raise
        except Exception as e:
            logger.error("Scan %s aborted: %s", session_id, e, exc_info=True)
            await self._persist_failure(state, f"Scan aborted: {e}")
            raise

    async def _claim(self, state: _RunState) -> None:
        """Write this executor's lease before the first item is touched."""
        now = self._clock()
        state.session = transition(
            state.session, ScanningSession, now,
            selection=state.session.selection, cursor=state.cursor,
            progress=state.session.progress, lease=self._lease(now),
        )
        await self._persist(state.session)
        logger.debug("Executor %s holds session %s", self.owner_id, state.session.session_id)

    async def _resolve_selection(self, state: _RunState) -> None:
        session_id = state.session.session_id
        reason: str | None = None
        try:
            items = await self._discovery.list_resource_types()
        except DiscoveryError as e:
            reason = f"Resource discovery failed: {e}"
        else:
            if not items:
                reason = "No resources discovered"

        if reason is not None:
            logger.error("Cannot resolve selection for %s: %s", session_id, reason)
            await self._persist_failure(state, reason)
            raise SelectionResolutionFailed(reason)

        state.items = list(items)
        now = self._clock()
        state.session = transition(
            state.session, ScanningSession, now,
            selection=state.items, cursor=0, lease=self._lease(now),
        )
        await self._persist(state.session)
        logger.info("Resolved 'all' to %d resource types", len(state.items))

    async def _process_items(self, state: _RunState) -> CompletionSummary:
        session_id = state.session.session_id
        stop_event = self._stop_event(session_id)
        total = len(state.items)
        stopped = False

        logger.info(
            "Scanning %d resource types for %s (starting at %d)",
            total, session_id, state.cursor,
        )

        for i in range(state.cursor, total):
            if stop_event.is_set() or await self._stop_requested(session_id):
                stopped = True
                break

            item = state.items[i]
            set_item_context(item)
            await self._snapshot(state, current_item=item)

            try:
                record = await self._adapter.infer(item)
                await self._index.store(record)
            except Exception as e:
                state.failed += 1
                state.errors = trim_errors(
                    state.errors
                    + [
                        ItemError(
                            item=item,
                            item_id=generate_capability_id(item),
                            message=str(e),
                            index=i,
                            timestamp=self._clock(),
                        )
                    ],
                    self._error_limit,
                )
                logger.warning("Item %d/%d %s failed: %s", i + 1, total, item, e)
            else:
                state.successful += 1
                logger.info("Item %d/%d %s indexed", i + 1, total, item)

            state.cursor = i + 1
            await self._snapshot(state)

        set_item_context(None)
        return await self._finish(state, stopped)

    async def _finish(self, state: _RunState, stopped: bool) -> CompletionSummary:
        session_id = state.session.session_id
        status: ProgressStatus = "stopped" if stopped else "completed"
        progress = self._progress(state, status)
        complete = transition(
            state.session, CompleteSession, self._clock(),
            selection=state.items, cursor=state.cursor,
            progress=progress, stopped=stopped,
        )
        await self._save_terminal(complete)
        state.session = complete
        self._schedule_cleanup(session_id)

        summary = completion_summary(progress, stopped)
        logger.info(
            "Scan %s %s: %d scanned, %d successful, %d failed in %s",
            session_id, status, summary.total_scanned,
            summary.successful, summary.failed, summary.processing_time,
        )
        return summary

    # --- Persistence ---

    def _progress(
        self,
        state: _RunState,
        status: ProgressStatus = "processing",
        current_item: str | None = None,
    ) -> ProgressSnapshot:
        return build_progress(
            state.run_start,
            self._clock(),
            current=state.cursor,
            total=max(len(state.items), state.cursor),
            successful=state.successful,
            failed=state.failed,
            recent_errors=state.errors,
            status=status,
            current_item=current_item,
            baseline=state.baseline,
            error_limit=self._error_limit,
            scan_started_at=state.scan_started_at,
        )

    async def _snapshot(self, state: _RunState, current_item: str | None = None) -> None:
        now = self._clock()
        state.session = transition(
            state.session, ScanningSession, now,
            selection=state.items, cursor=state.cursor,
            progress=self._progress(state, current_item=current_item),
            lease=self._lease(now),
        )
        await self._persist(state.session)

    async def _persist(self, session: ScanSession) -> None:
        """Save, tolerating up to ``max_persist_failures - 1`` consecutive failures."""
        session_id = session.session_id
        try:
            await self._store.save(session)
        except InvalidSessionTransition:
            raise
        except SessionStoreError as e:
            failures = self._persist_failures.get(session_id, 0) + 1
            self._persist_failures[session_id] = failures
            logger.error(
                "Persisting session %s failed (%d/%d): %s",
                session_id, failures, self._max_persist_failures, e,
            )
            if failures >= self._max_persist_failures:
                raise SessionStoreError(
                    f"Progress for session {session_id} could not be persisted "
                    f"{failures} times in a row: {e}"
                ) from e
        else:
            self._persist_failures[session_id] = 0

    async def _save_terminal(self, session: CompleteSession) -> None:
        """Save a terminal state, retrying up to ``max_persist_failures`` times."""
        last_error: SessionStoreError | None = None
        for attempt in range(1, self._max_persist_failures + 1):
            try:
                await self._store.save(session)
                return
            except InvalidSessionTransition:
                raise
            except SessionStoreError as e:
                last_error = e
                logger.error(
                    "Saving final state of %s failed (attempt %d/%d): %s",
                    session.session_id, attempt, self._max_persist_failures, e,
                )
        raise SessionStoreError(
            f"Final state of session {session.session_id} could not be persisted: {last_error}"
        ) from last_error

    async def _persist_failure(self, state: _RunState, reason: str) -> None:
        """Best-effort terminal ``failed`` state so no session stays scanning."""
        session_id = state.session.session_id
        if isinstance(state.session, CompleteSession):
            return
        failed = transition(
            state.session, CompleteSession, self._clock(),
            selection=state.items or state.session.selection,
            cursor=state.cursor,
            progress=self._progress(state, "failed"),
            error=reason,
        )
        try:
            await self._store.save(failed)
        except ScanError as e:
            logger.error("Could not record failure of session %s: %s", session_id, e)
            return
        state.session = failed
        self._schedule_cleanup(session_id)

    def _lease(self, now: datetime) -> ExecutorLease:
        return ExecutorLease(
            owner=self.owner_id, heartbeat_at=now, expires_at=now + self._lease_ttl
        )

    async def _stop_requested(self, session_id: str) -> bool:
        """Whether a stop was recorded on the session by another process."""
        try:
            stored = await self._store.get(session_id)
        except SessionStoreError as e:
            logger.warning("Could not read stop request of %s: %s", session_id, e)
            return False
        return isinstance(stored, ScanningSession) and stored.stop_requested

    # --- Housekeeping ---

    def _stop_event(self, session_id: str) -> asyncio.Event:
        event = self._stop_events.get(session_id)
        if event is None:
            event = asyncio.Event()
            self._stop_events[session_id] = event
        return event

    def _schedule_cleanup(self, session_id: str) -> None:
        task = asyncio.create_task(
            self._store.delete_after(session_id, self._cleanup_delay_s),
            name=f"capscan-cleanup-{session_id}",
        )
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)
        logger.debug("Session %s scheduled for deletion in %.0fs", session_id, self._cleanup_delay_s)

    def _on_task_done(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        if task.cancelled():
            logger.warning("Scan task for %s was cancelled", session_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scan task for %s failed: %s", session_id, exc)
