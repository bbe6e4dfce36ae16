# src/scan/handlers.py — v1
"""Phase handlers of the scan step protocol.

Each handler is a pure function of the stored session and the caller's
request: it returns the next session (or the same one), the response to
send back, and the side effect the router must perform. Handlers never
touch the store or the executor themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from capscan.scan.errors import StepValidationError
from capscan.scan.models import (
    ALL_ITEMS,
    ChoiceOption,
    CompleteSession,
    NextCall,
    PausePointResponse,
    ProgressResponse,
    ScanningSession,
    ScanSession,
    ScanStartedResponse,
    SelectingSession,
    SpecifyingSession,
    StepRequest,
    StopRequestedResponse,
    WorkflowResponse,
)
from capscan.scan.progress import build_progress
from capscan.scan.session_store import transition

Action = Literal["none", "start", "stop"]

SELECT_ALL = "all"
SELECT_SPECIFIC = "specific"

# Numbered answers shown next to the options
_NUMERIC_CHOICES = {"1": SELECT_ALL, "2": SELECT_SPECIFIC}

SELECTION_OPTIONS = [
    ChoiceOption(value=SELECT_ALL, label="Scan all resource types in the cluster"),
    ChoiceOption(value=SELECT_SPECIFIC, label="Scan only specific resource types"),
]

RESOURCE_LIST_HINT = (
    "Comma-separated resource names: Kind.group for grouped resources, "
    "Kind for core resources (e.g. SQL.devopstoolkit.live, Deployment.apps, Service)"
)


@dataclass(frozen=True)
class PhaseOutcome:
    """Result of a phase handler."""

    session: ScanSession
    response: WorkflowResponse
    action: Action = "none"
    persist: bool = False


# =====================================================================
#  SELECTING
# =====================================================================


def selection_pause(session: ScanSession) -> PausePointResponse:
    return PausePointResponse(
        session_id=session.session_id,
        phase="selecting",
        question="Scan all cluster resources or only specific ones?",
        options=SELECTION_OPTIONS,
        required_next_call=NextCall(
            session_id=session.session_id,
            phase="selecting",
            fields={"response": "all | specific (or 1 | 2)"},
        ),
    )


def normalize_choice(response: str) -> str:
    """Lower-case, trimmed answer with numeric choices mapped to their value."""
    answer = response.strip().lower()
    return _NUMERIC_CHOICES.get(answer, answer)


def handle_selecting(
    session: SelectingSession, request: StepRequest, now: datetime
) -> PhaseOutcome:
    """No answer pauses; ``all`` starts scanning; ``specific`` asks for a list."""
    if request.response is None or not request.response.strip():
        return PhaseOutcome(session=session, response=selection_pause(session))

    choice = normalize_choice(request.response)
    if choice == SELECT_ALL:
        scanning = transition(session, ScanningSession, now, selection=ALL_ITEMS)
        return PhaseOutcome(
            session=scanning,
            response=scan_started(scanning),
            action="start",
            persist=True,
        )

    if choice == SELECT_SPECIFIC:
        specifying = transition(session, SpecifyingSession, now)
        return PhaseOutcome(
            session=specifying,
            response=specification_pause(specifying),
            persist=True,
        )

    raise StepValidationError(
        f"Invalid selection {request.response!r}: expected one of "
        f"{SELECT_ALL}, {SELECT_SPECIFIC} (or 1, 2)",
        expected_phase="selecting",
        session_id=session.session_id,
        required_next_call=selection_pause(session).required_next_call.to_wire(),
    )


# =====================================================================
#  SPECIFYING
# =====================================================================


def specification_pause(session: ScanSession) -> PausePointResponse:
    return PausePointResponse(
        session_id=session.session_id,
        phase="specifying",
        question="Which resource types should be scanned?",
        required_next_call=NextCall(
            session_id=session.session_id,
            phase="specifying",
            fields={"resourceList": RESOURCE_LIST_HINT},
        ),
    )


def parse_resource_list(resource_list: str | list[str]) -> list[str]:
    """Split on commas, trim, drop blanks and duplicates; order preserved."""
    if isinstance(resource_list, str):
        parts = resource_list.split(",")
    else:
        parts = [p for entry in resource_list for p in entry.split(",")]

    names: list[str] = []
    seen: set[str] = set()
    for part in parts:
        name = part.strip()
        if name and name not in seen:
            seen.add(name)
            names.append(name)
    return names


def handle_specifying(
    session: SpecifyingSession, request: StepRequest, now: datetime
) -> PhaseOutcome:
    """A non-empty explicit list moves the session to scanning."""
    if request.resource_list is None:
        return PhaseOutcome(session=session, response=specification_pause(session))

    names = parse_resource_list(request.resource_list)
    if not names:
        raise StepValidationError(
            "resourceList is empty: provide at least one resource name",
            expected_phase="specifying",
            session_id=session.session_id,
            required_next_call=specification_pause(session).required_next_call.to_wire(),
        )

    scanning = transition(session, ScanningSession, now, selection=names)
    return PhaseOutcome(
        session=scanning,
        response=scan_started(scanning),
        action="start",
        persist=True,
    )


# =====================================================================
#  SCANNING
# =====================================================================


def scan_started(session: ScanningSession) -> ScanStartedResponse:
    total = len(session.selection) if session.is_resolved else None
    resumed = session.cursor > 0 or session.progress is not None
    if resumed:
        message = f"Scan resumed at item {session.cursor + 1}"
        if total is not None:
            message += f" of {total}"
    elif total is None:
        message = "Scan started for all cluster resources"
    else:
        message = f"Scan started for {total} resource(s)"
    return ScanStartedResponse(
        session_id=session.session_id,
        status="resumed" if resumed else "started",
        total=total,
        cursor=session.cursor,
        message=message,
        check_progress={"operation": "progress", "sessionId": session.session_id},
    )


def handle_scanning(
    session: ScanningSession,
    request: StepRequest,
    now: datetime,
    executor_active: bool,
) -> PhaseOutcome:
    """Progress read or stop while running; resume when no executor is active."""
    if request.stop:
        if executor_active:
            return PhaseOutcome(
                session=session,
                response=StopRequestedResponse(
                    session_id=session.session_id,
                    message="Stop requested; the scan halts after the current item",
                    progress=session.progress,
                ),
                action="stop",
            )
        stopped = stop_idle_session(session, now)
        return PhaseOutcome(
            session=stopped,
            response=StopRequestedResponse(
                session_id=session.session_id,
                message="Scan was not running; session marked as stopped",
                progress=stopped.progress,
            ),
            persist=True,
        )

    if executor_active:
        return PhaseOutcome(
            session=session,
            response=ProgressResponse(
                session_id=session.session_id,
                phase="scanning",
                running=True,
                progress=session.progress,
                message="Scan in progress",
            ),
        )

    return PhaseOutcome(
        session=session, response=scan_started(session), action="start"
    )


def stop_idle_session(session: ScanningSession, now: datetime) -> CompleteSession:
    """Terminal stopped state for a scanning session with no live executor."""
    prev = session.progress
    total = len(session.selection) if session.is_resolved else 0
    progress = build_progress(
        prev.started_at if prev else now,
        now,
        current=session.cursor,
        total=max(total, session.cursor),
        successful=prev.successful if prev else 0,
        failed=prev.failed if prev else 0,
        recent_errors=list(prev.recent_errors) if prev else [],
        status="stopped",
    )
    return transition(
        session,
        CompleteSession,
        now,
        selection=session.selection,
        cursor=session.cursor,
        progress=progress,
        stopped=True,
    )
