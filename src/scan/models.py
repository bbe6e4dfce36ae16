# src/scan/models.py — v2
"""Scan workflow models: session variants, progress, capability records.

A session is a tagged union discriminated on ``phase``: each variant carries
only the fields that are valid in that phase. All models serialise with
camelCase keys so persisted records and wire responses share one format.

Changelog:
    v2: ExecutorLease on ScanningSession (owner, heartbeat, expiry) and the
        persisted stop_requested flag, so a run is visible to every process
        sharing the session store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Phase = Literal["selecting", "specifying", "scanning", "complete"]
ProgressStatus = Literal["processing", "completed", "stopped", "failed"]
Complexity = Literal["low", "medium", "high"]

ALL_ITEMS = "all"

# Either the "all" sentinel or an explicit ordered list of resource names.
Selection = Union[Literal["all"], list[str]]


class CamelModel(BaseModel):
    """Base for models exchanged on the wire or persisted as JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =====================================================================
#  PROGRESS
# =====================================================================


class ItemError(CamelModel):
    """One failed item, kept in the bounded recent-errors window."""

    item: str
    item_id: str
    message: str
    index: int = Field(ge=0)
    timestamp: datetime


class ProgressSnapshot(CamelModel):
    """Value object replaced wholesale on every executor update."""

    status: ProgressStatus = "processing"
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    percentage: int = Field(ge=0, le=100)
    current_item: str | None = None
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    recent_errors: list[ItemError] = Field(default_factory=list)
    started_at: datetime
    last_updated: datetime
    completed_at: datetime | None = None
    estimated_time_remaining: str | None = None
    estimated_seconds_remaining: float | None = None
    total_processing_time: str | None = None

    @model_validator(mode="after")
    def _check_counters(self) -> ProgressSnapshot:
        if self.current > self.total:
            raise ValueError(f"current ({self.current}) exceeds total ({self.total})")
        if self.successful + self.failed > self.current:
            raise ValueError("successful + failed exceeds current")
        if self.status == "completed" and self.current != self.total:
            raise ValueError("completed snapshot must have current == total")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"


# =====================================================================
#  SESSION VARIANTS
# =====================================================================


class ExecutorLease(CamelModel):
    """Claim held by the executor currently processing a scanning session.

    Renewed on every progress write. Once ``expires_at`` has passed the
    owner is presumed dead and another executor may resume the session.
    """

    owner: str
    heartbeat_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


class _SessionBase(CamelModel):
    session_id: str
    started_at: datetime
    last_activity: datetime


class SelectingSession(_SessionBase):
    """Waiting for the caller to choose between all or specific resources."""

    phase: Literal["selecting"] = "selecting"


class SpecifyingSession(_SessionBase):
    """Waiting for the caller to supply an explicit resource list."""

    phase: Literal["specifying"] = "specifying"


class ScanningSession(_SessionBase):
    """Selection fixed; the executor owns this record while it runs."""

    phase: Literal["scanning"] = "scanning"
    selection: Selection
    cursor: int = Field(default=0, ge=0)
    progress: ProgressSnapshot | None = None
    lease: ExecutorLease | None = None
    stop_requested: bool = False

    @model_validator(mode="after")
    def _check_cursor(self) -> ScanningSession:
        if isinstance(self.selection, list) and self.cursor > len(self.selection):
            raise ValueError("cursor beyond end of selection")
        return self

    @property
    def is_resolved(self) -> bool:
        return isinstance(self.selection, list)

    def lease_holder(self, now: datetime) -> str | None:
        """Owner of a live lease at ``now``, or None."""
        if self.lease is not None and self.lease.is_live(now):
            return self.lease.owner
        return None


class CompleteSession(_SessionBase):
    """Terminal state: finished, stopped or failed. Only deletion may follow."""

    phase: Literal["complete"] = "complete"
    selection: Selection
    cursor: int = Field(default=0, ge=0)
    progress: ProgressSnapshot
    stopped: bool = False
    error: str | None = None


ScanSession = Annotated[
    Union[SelectingSession, SpecifyingSession, ScanningSession, CompleteSession],
    Field(discriminator="phase"),
]

SESSION_ADAPTER: TypeAdapter[ScanSession] = TypeAdapter(ScanSession)


# =====================================================================
#  CAPABILITY RECORDS
# =====================================================================


class CapabilityPayload(CamelModel):
    """Validated classification output for one resource type."""

    capabilities: list[StrictStr]
    providers: list[StrictStr]
    abstractions: list[StrictStr]
    complexity: Complexity
    description: StrictStr
    use_case: StrictStr
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("capabilities", "providers", "abstractions")
    @classmethod
    def _strip_tags(cls, v: list[str]) -> list[str]:
        return [t.strip() for t in v if t.strip()]

    @field_validator("description", "use_case")
    @classmethod
    def _non_empty(cls, v: str, info) -> str:  # noqa: N805
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} must not be empty")
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, v: Any) -> Any:
        # bool is an int subclass and strings would be coerced otherwise
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("confidence must be a number")
        return v


class CapabilityRecord(CapabilityPayload):
    """Capability payload plus identity and resource metadata."""

    id: str
    resource_name: str
    api_version: str | None = None
    group: str | None = None
    version: str | None = None
    analyzed_at: datetime

    def search_text(self) -> str:
        """Text embedded for semantic search."""
        parts = [
            self.resource_name,
            " ".join(self.capabilities),
            " ".join(self.providers),
            " ".join(self.abstractions),
            self.description,
            self.use_case,
            self.complexity,
        ]
        return " ".join(p for p in parts if p)


class CompletionSummary(CamelModel):
    """Final counters of a batch run."""

    total_scanned: int
    successful: int
    failed: int
    processing_time: str
    stopped: bool = False
    error: str | None = None


# =====================================================================
#  STEP PROTOCOL
# =====================================================================


class StepRequest(CamelModel):
    """One call of the step protocol.

    ``session_id`` absent starts a new session. ``response`` answers the
    selecting pause point; ``resource_list`` answers the specifying one.
    """

    session_id: str | None = None
    phase: str | None = None
    response: str | None = None
    resource_list: str | list[str] | None = None
    stop: bool = False


class ChoiceOption(CamelModel):
    value: str
    label: str


class NextCall(CamelModel):
    """Mandatory shape of the caller's next step call."""

    session_id: str
    phase: str
    fields: dict[str, str] = Field(default_factory=dict)


class PausePointResponse(CamelModel):
    kind: Literal["pause"] = "pause"
    session_id: str
    phase: Phase
    question: str
    options: list[ChoiceOption] = Field(default_factory=list)
    required_next_call: NextCall


class ScanStartedResponse(CamelModel):
    kind: Literal["started"] = "started"
    session_id: str
    status: Literal["started", "resumed"] = "started"
    total: int | None = None
    cursor: int = 0
    message: str
    check_progress: dict[str, str]


class ProgressResponse(CamelModel):
    kind: Literal["progress"] = "progress"
    session_id: str
    phase: Phase
    running: bool = False
    progress: ProgressSnapshot | None = None
    summary: CompletionSummary | None = None
    message: str | None = None


class StopRequestedResponse(CamelModel):
    kind: Literal["stop_requested"] = "stop_requested"
    session_id: str
    message: str
    progress: ProgressSnapshot | None = None


class CompletionResponse(CamelModel):
    kind: Literal["complete"] = "complete"
    session_id: str
    summary: CompletionSummary
    stopped: bool = False


class AlreadyCompleteResponse(CamelModel):
    kind: Literal["already_complete"] = "already_complete"
    session_id: str
    phase: Literal["complete"] = "complete"
    stopped: bool = False
    summary: CompletionSummary
    message: str


class ErrorResponse(CamelModel):
    kind: Literal["error"] = "error"
    error: str
    message: str
    session_id: str | None = None
    expected_phase: str | None = None
    required_next_call: dict[str, Any] | None = None


WorkflowResponse = Union[
    PausePointResponse,
    ScanStartedResponse,
    ProgressResponse,
    StopRequestedResponse,
    CompletionResponse,
    AlreadyCompleteResponse,
]
