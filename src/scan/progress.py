# src/scan/progress.py — v2
"""Progress snapshot computation.

Pure functions over execution counters: no clock access, no I/O. The
executor passes ``now`` explicitly so snapshots are reproducible in tests.

Changelog:
    v2: total_processing_time spans the whole scan from scan_started_at;
        only the ETA is measured over the current run.
"""

from __future__ import annotations

from datetime import datetime

from capscan.scan.models import (
    CompletionSummary,
    ItemError,
    ProgressSnapshot,
    ProgressStatus,
)

DEFAULT_ERROR_WINDOW = 5


def format_duration(seconds: float) -> str:
    """Render a duration as minutes (one decimal) above a minute, else seconds."""
    minutes = round(seconds / 60, 1)
    if minutes > 1:
        return f"{minutes:g} minutes"
    return f"{round(seconds)} seconds"


def estimate_remaining(
    elapsed_s: float, processed: int, remaining: int
) -> float | None:
    """Throughput-based ETA in seconds; None when nothing was processed yet."""
    if processed <= 0:
        return None
    return elapsed_s / processed * max(remaining, 0)


def trim_errors(
    errors: list[ItemError], limit: int = DEFAULT_ERROR_WINDOW
) -> list[ItemError]:
    """Keep the last ``limit`` errors."""
    if limit <= 0:
        return []
    return list(errors[-limit:])


def build_progress(
    start_time: datetime,
    now: datetime,
    current: int,
    total: int,
    successful: int,
    failed: int,
    recent_errors: list[ItemError],
    *,
    status: ProgressStatus = "processing",
    current_item: str | None = None,
    baseline: int = 0,
    error_limit: int = DEFAULT_ERROR_WINDOW,
    scan_started_at: datetime | None = None,
) -> ProgressSnapshot:
    """Build a ProgressSnapshot from counters.

    Args:
        start_time: When this run started processing items.
        now: Snapshot time.
        current: Items attempted so far (whole session).
        total: Items in the resolved selection.
        successful: Items classified and indexed.
        failed: Items recorded as failed.
        recent_errors: Errors so far, oldest first; trimmed to ``error_limit``.
        status: Progress status.
        current_item: Item being processed, if any.
        baseline: Value of ``current`` when this run started. Throughput is
            measured over ``current - baseline`` so a resumed run does not
            count work done before the restart as instantaneous.
        error_limit: Size of the recent-errors window.
        scan_started_at: First start of the scan across restarts; defaults
            to ``start_time``. The total processing time of a terminal
            snapshot is measured from here.
    """
    elapsed = max((now - start_time).total_seconds(), 0.0)
    scan_started_at = scan_started_at or start_time
    percentage = round(current / total * 100) if total else (100 if status == "completed" else 0)

    eta_s: float | None = None
    eta_text: str | None = None
    if status == "processing":
        eta_s = estimate_remaining(elapsed, current - baseline, total - current)
        if eta_s is not None:
            eta_text = format_duration(eta_s)

    terminal = status != "processing"
    return ProgressSnapshot(
        status=status,
        current=current,
        total=total,
        percentage=min(percentage, 100),
        current_item=None if terminal else current_item,
        successful=successful,
        failed=failed,
        recent_errors=trim_errors(recent_errors, error_limit),
        started_at=scan_started_at,
        last_updated=now,
        completed_at=now if terminal else None,
        estimated_time_remaining=eta_text,
        estimated_seconds_remaining=eta_s,
        total_processing_time=(
            format_duration(max((now - scan_started_at).total_seconds(), 0.0))
            if terminal
            else None
        ),
    )


def completion_summary(
    progress: ProgressSnapshot, stopped: bool = False, error: str | None = None
) -> CompletionSummary:
    """Final summary derived from a terminal snapshot."""
    return CompletionSummary(
        total_scanned=progress.current,
        successful=progress.successful,
        failed=progress.failed,
        processing_time=progress.total_processing_time or format_duration(0),
        stopped=stopped,
        error=error,
    )
