# src/logging/context.py — v1
"""Contextual logging support — attach session_id, phase, item to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Scan context, set per step call and per executor task
_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phase", default=None
)
_item: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "item", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    session_id: str | None = None
    phase: str | None = None
    item: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        session_id=_session_id.get(),
        phase=_phase.get(),
        item=_item.get(),
    )


def set_session_context(session_id: str, phase: str | None = None) -> None:
    """Set session-level context (called per step and per executor task)."""
    _session_id.set(session_id)
    _phase.set(phase)


def set_item_context(item: str | None) -> None:
    """Set the item currently being processed by the executor."""
    _item.set(item)


def clear_context() -> None:
    """Reset all context variables."""
    _session_id.set(None)
    _phase.set(None)
    _item.set(None)
