# src/scan/errors.py — v2
"""Exception hierarchy for the capability scan workflow.

Caller errors (StepValidationError, SessionNotFound) are recoverable by
issuing a corrected call. ItemScanError subclasses are terminal for a single
item only. SelectionResolutionFailed, SessionStoreError and
DependencyUnavailable abort the whole batch.
"""

from __future__ import annotations

from typing import Any


class ScanError(Exception):
    """Base class for all capability scan errors."""


class StepValidationError(ScanError):
    """Caller-supplied phase or input is malformed.

    Carries the phase the session actually expects and, when known, the
    shape of the call the caller must issue next.
    """

    def __init__(
        self,
        message: str,
        expected_phase: str | None = None,
        session_id: str | None = None,
        required_next_call: dict[str, Any] | None = None,
    ) -> None:
        self.expected_phase = expected_phase
        self.session_id = session_id
        self.required_next_call = required_next_call
        super().__init__(message)


class SessionNotFound(ScanError):
    """Unknown or expired session identifier."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionStoreError(ScanError):
    """Session record could not be read or written."""


class ItemScanError(ScanError):
    """Failure confined to a single item of the batch."""

    def __init__(self, item: str, message: str) -> None:
        self.item = item
        super().__init__(message)


class DescriptionUnavailable(ItemScanError):
    """The item's description could not be fetched from the inspected system."""


class ClassificationFailed(ItemScanError):
    """The classification call failed or its output was rejected."""


class InvalidGenerativeOutput(ClassificationFailed):
    """Classification output failed strict validation."""

    EXCERPT_LIMIT = 200

    def __init__(self, message: str, raw_text: str, item: str = "") -> None:
        self.excerpt = _excerpt(raw_text, self.EXCERPT_LIMIT)
        super().__init__(item, f"{message} (output: {self.excerpt!r})")


class InvalidSessionTransition(SessionStoreError):
    """A write would break session invariants (phase order, cursor, terminal state)."""


class IndexWriteError(ScanError):
    """A validated record could not be written to the semantic index."""


class SelectionResolutionFailed(ScanError):
    """Enumerating 'all' items failed; nothing can be iterated."""


class DependencyUnavailable(ScanError):
    """A required external dependency is not configured or reachable."""


class ScanAlreadyRunning(ScanError):
    """An executor is already active for this session."""

    def __init__(self, session_id: str, owner: str | None = None) -> None:
        self.session_id = session_id
        self.owner = owner
        message = f"Scan already running for session {session_id}"
        if owner:
            message += f" (executor {owner})"
        super().__init__(message)


def _excerpt(text: str, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
