"""
Pipeline schemas.

Defines the stage, status, log and verdict contracts shared by the
orchestrator, the verdict synthesizer and the session controller.

All models are frozen. State changes are expressed by replacing a
model with an updated copy, never by mutating it in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fortress.app.schemas.findings import Finding


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class StageStatus(str, Enum):
    """
    Per-stage execution status.

    Transitions are forward only:
        PENDING -> RUNNING -> {COMPLETED | ERROR}
    Only a full session reset returns a stage to PENDING.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @property
    def terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.ERROR)


_ALLOWED_STAGE_TRANSITIONS: Dict[StageStatus, FrozenSet[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING}),
    StageStatus.RUNNING: frozenset({StageStatus.COMPLETED, StageStatus.ERROR}),
    StageStatus.COMPLETED: frozenset(),
    StageStatus.ERROR: frozenset(),
}


class PipelineStatus(str, Enum):
    """
    Session-wide pipeline status. Exactly one value holds at a time.

    IDLE is the initial and post-reset state. PASSED and FAILED are
    terminal for a completed audit. HEALING is reported through the
    investigation sub-state and never replaces the main status.
    """

    IDLE = "IDLE"
    SCANNING = "SCANNING"
    ANALYZING = "ANALYZING"
    VERDICT = "VERDICT"
    HEALING = "HEALING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    SYSTEM = "SYSTEM"


class VerdictResult(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    AUTO_FIX = "AUTO_FIX"


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


class Stage(BaseModel):
    """
    One discrete phase of the analysis pipeline.

    Registry position defines execution order and is never changed
    at runtime.
    """

    id: str = Field(..., min_length=1, description="Unique, stable stage id")
    label: str = Field(..., description="Human-readable stage label")
    status: StageStatus = Field(StageStatus.PENDING)
    progress: float = Field(0.0, ge=0.0, le=1.0)

    def advance(self, status: StageStatus) -> "Stage":
        """
        Return a copy of this stage moved forward to ``status``.

        Raises ValueError for any transition other than
        PENDING -> RUNNING -> {COMPLETED | ERROR}.
        """
        if status not in _ALLOWED_STAGE_TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal stage transition for '{self.id}': "
                f"{self.status.value} -> {status.value}"
            )
        return self.model_copy(
            update={
                "status": status,
                "progress": 1.0 if status.terminal else 0.0,
            }
        )

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Log entries
# ---------------------------------------------------------------------------


def _now_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class LogEntry(BaseModel):
    """An immutable diagnostic line emitted by any audit phase."""

    timestamp: str = Field(default_factory=_now_timestamp)
    level: LogLevel
    message: str

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------


class Verdict(BaseModel):
    """
    Terminal decision for one completed audit.

    Created exactly once per audit, strictly after every stage has
    reached a terminal status.
    """

    result: VerdictResult
    action: str = Field(..., description="Recommended operator action")
    confidence: float = Field(..., ge=0.0, le=1.0)
    explanation: str

    @property
    def pipeline_status(self) -> PipelineStatus:
        if self.result == VerdictResult.FAIL:
            return PipelineStatus.FAILED
        return PipelineStatus.PASSED

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Target identity
# ---------------------------------------------------------------------------


class TargetMetadata(BaseModel):
    """Resolved repository identity returned by the data source."""

    owner: str
    name: str
    url: str
    default_branch: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = Field(0, ge=0)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Orchestrator results
# ---------------------------------------------------------------------------


class StageResult(BaseModel):
    """Outcome of a single stage execution."""

    stage_id: str
    status: StageStatus
    duration_seconds: float = 0.0
    findings_count: int = 0
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class PipelineRunResult(BaseModel):
    """
    Union of findings across all stages, in discovery order, plus the
    per-stage outcomes. Duplicate ids are NOT removed here.
    """

    findings: List[Finding] = Field(default_factory=list)
    stage_results: List[StageResult] = Field(default_factory=list)
    aborted: bool = Field(
        False,
        description="True if the run stopped early because its session went stale",
    )

    @property
    def errors(self) -> Dict[str, str]:
        return {
            r.stage_id: r.error
            for r in self.stage_results
            if r.error is not None
        }

    model_config = ConfigDict(frozen=True, extra="forbid")
