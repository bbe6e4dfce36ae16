# src/scan/router.py — v2
"""Step router: load or create the session, check the phase, dispatch, persist.

Phase-specific logic lives in ``capscan.scan.handlers``. The router is the
only caller-facing writer of session records, and it never rewrites the
progress of a session whose executor is running: the scanning handler
returns ``persist=False`` whenever ``executor_active`` is true.

An executor counts as active when it runs in this process or when the
session carries a live lease of another executor. A stop for a run owned by
another process is recorded on the session as ``stop_requested``; that
executor checks the flag before every item.

Changelog:
    v2: lease-aware activity checks and persisted stop requests; a new
        session is stored only once its first input was accepted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Protocol

from capscan.logging.context import set_session_context
from capscan.scan.errors import (
    DependencyUnavailable,
    InvalidSessionTransition,
    SessionNotFound,
    StepValidationError,
)
from capscan.scan.handlers import (
    PhaseOutcome,
    handle_scanning,
    handle_selecting,
    handle_specifying,
    selection_pause,
    specification_pause,
)
from capscan.scan.models import (
    AlreadyCompleteResponse,
    CompleteSession,
    NextCall,
    ProgressResponse,
    ScanningSession,
    ScanSession,
    SelectingSession,
    SpecifyingSession,
    StepRequest,
    WorkflowResponse,
)
from capscan.scan.progress import completion_summary
from capscan.scan.session_store import BaseSessionStore, new_session, utcnow

logger = logging.getLogger(__name__)

_STOP_WRITE_ATTEMPTS = 3


class ExecutorControl(Protocol):
    """What the router needs from the batch executor."""

    owner_id: str

    def is_running(self, session_id: str) -> bool: ...

    def start(self, session_id: str) -> bool: ...

    def request_stop(self, session_id: str) -> bool: ...

    def preflight(self) -> str | None: ...


class StepRouter:
    """Maps (stored phase, caller input) to the next phase and response."""

    def __init__(
        self,
        store: BaseSessionStore,
        executor: ExecutorControl,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._executor = executor
        self._clock = clock

    async def route(self, request: StepRequest) -> WorkflowResponse:
        """Handle one step call.

        Raises:
            StepValidationError: Declared phase or input does not fit the session.
            SessionNotFound: Unknown session ID.
            DependencyUnavailable: Scanning cannot start (classification not configured).
        """
        now = self._clock()
        created = request.session_id is None

        if created:
            if request.phase not in (None, "selecting"):
                raise StepValidationError(
                    f"A new session starts in phase 'selecting', not {request.phase!r}",
                    expected_phase="selecting",
                )
            session: ScanSession = new_session(now)
            set_session_context(session.session_id, session.phase)
        else:
            session = await self._store.load(request.session_id)
            set_session_context(session.session_id, session.phase)
            if isinstance(session, CompleteSession):
                return already_complete(session)
            if request.phase != session.phase:
                raise StepValidationError(
                    f"Session {session.session_id} is in phase {session.phase!r}; "
                    f"call with phase={session.phase!r}"
                    + (f" (got {request.phase!r})" if request.phase else ""),
                    expected_phase=session.phase,
                    session_id=session.session_id,
                    required_next_call=next_call_for(session).to_wire(),
                )

        outcome = self._dispatch(session, request, now)
        if created:
            if not outcome.persist:
                # The pause names this session; it must exist for the answer.
                await self._store.save(session)
            logger.info("Created capability scan session %s", session.session_id)
        await self._apply(outcome)
        return outcome.response

    async def progress(self, session_id: str | None = None) -> ProgressResponse:
        """Read-only progress; without an ID the most recently active session."""
        if session_id is None:
            session = await self._store.latest()
            if session is None:
                raise SessionNotFound("(latest)")
        else:
            session = await self._store.load(session_id)

        if isinstance(session, CompleteSession):
            return ProgressResponse(
                session_id=session.session_id,
                phase="complete",
                progress=session.progress,
                summary=completion_summary(session.progress, session.stopped, session.error),
                message=session.error or ("Scan stopped" if session.stopped else "Scan complete"),
            )
        if isinstance(session, ScanningSession):
            running = self.executor_active(session, self._clock())
            if running:
                message = "Stop requested" if session.stop_requested else None
            else:
                message = "Scan not running; call scan again to resume"
            return ProgressResponse(
                session_id=session.session_id,
                phase="scanning",
                running=running,
                progress=session.progress,
                message=message,
            )
        return ProgressResponse(
            session_id=session.session_id,
            phase=session.phase,
            message=f"Scan not started; session is waiting in phase {session.phase!r}",
        )

    async def stop(self, session_id: str) -> WorkflowResponse:
        """Request a stop outside the regular phase flow."""
        session = await self._store.load(session_id)
        set_session_context(session.session_id, session.phase)
        if isinstance(session, CompleteSession):
            return already_complete(session)
        if not isinstance(session, ScanningSession):
            raise StepValidationError(
                f"Session {session_id} is not scanning (phase {session.phase!r}); nothing to stop",
                expected_phase=session.phase,
                session_id=session_id,
                required_next_call=next_call_for(session).to_wire(),
            )
        now = self._clock()
        outcome = handle_scanning(
            session,
            StepRequest(session_id=session_id, phase="scanning", stop=True),
            now,
            executor_active=self.executor_active(session, now),
        )
        await self._apply(outcome)
        return outcome.response

    def executor_active(self, session: ScanningSession, now: datetime) -> bool:
        """Running in this process, or leased by a live executor elsewhere."""
        if self._executor.is_running(session.session_id):
            return True
        holder = session.lease_holder(now)
        return holder is not None and holder != self._executor.owner_id

    def _dispatch(
        self, session: ScanSession, request: StepRequest, now: datetime
    ) -> PhaseOutcome:
        if isinstance(session, SelectingSession):
            return handle_selecting(session, request, now)
        if isinstance(session, SpecifyingSession):
            return handle_specifying(session, request, now)
        if isinstance(session, ScanningSession):
            return handle_scanning(
                session,
                request,
                now,
                executor_active=self.executor_active(session, now),
            )
        raise StepValidationError(f"No handler for phase {session.phase!r}")

    async def _apply(self, outcome: PhaseOutcome) -> None:
        session_id = outcome.session.session_id

        if outcome.action == "start":
            reason = self._executor.preflight()
            if reason is not None:
                raise DependencyUnavailable(reason)

        if outcome.persist:
            await self._store.save(outcome.session)
            logger.info("Session %s → %s", session_id, outcome.session.phase)

        if outcome.action == "start":
            if self._executor.start(session_id):
                logger.info("Launched executor for session %s", session_id)
        elif outcome.action == "stop":
            if self._executor.request_stop(session_id):
                logger.info("Stop requested for session %s", session_id)
            else:
                await self._record_stop(session_id)

    async def _record_stop(self, session_id: str) -> None:
        """Flag the stored session so the executor holding its lease halts."""
        for attempt in range(1, _STOP_WRITE_ATTEMPTS + 1):
            current = await self._store.get(session_id)
            if not isinstance(current, ScanningSession):
                logger.info("Session %s finished before the stop was recorded", session_id)
                return
            flagged = current.model_copy(
                update={"stop_requested": True, "last_activity": self._clock()}
            )
            try:
                await self._store.save(flagged)
            except InvalidSessionTransition as e:
                # The executor wrote in between; retry on the fresh record.
                if attempt == _STOP_WRITE_ATTEMPTS:
                    raise
                logger.debug("Recording stop for %s raced a write: %s", session_id, e)
                continue
            logger.info("Stop recorded for session %s (held by another executor)", session_id)
            return


def already_complete(session: CompleteSession) -> AlreadyCompleteResponse:
    if session.error:
        message = f"Scan failed: {session.error}"
    elif session.stopped:
        message = "Scan was stopped; start a new session to scan again"
    else:
        message = "Scan already complete"
    return AlreadyCompleteResponse(
        session_id=session.session_id,
        stopped=session.stopped,
        summary=completion_summary(session.progress, session.stopped, session.error),
        message=message,
    )


def next_call_for(session: ScanSession) -> NextCall:
    """The call shape a session expects in its current phase."""
    if isinstance(session, SelectingSession):
        return selection_pause(session).required_next_call
    if isinstance(session, SpecifyingSession):
        return specification_pause(session).required_next_call
    return NextCall(session_id=session.session_id, phase=session.phase)
