"""
Session-scoped and process-scoped state contracts.

These models are the read surface exposed to the presentation layer.
Consumers observe immutable snapshots; only the Session Controller
produces new ones.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import (
    LogEntry,
    PipelineStatus,
    Stage,
    TargetMetadata,
    Verdict,
    VerdictResult,
)


# ---------------------------------------------------------------------------
# Investigation
# ---------------------------------------------------------------------------


class ExplanationStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    DEGRADED = "degraded"


class Remediation(BaseModel):
    """Suggested fix for one finding, as returned by the reasoner."""

    suggested_fix: str
    diff: str = ""
    degraded: bool = Field(
        False,
        description="True if the text is a collaborator failure reason",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class InvestigationSession(BaseModel):
    """
    Deep-dive sub-state for the currently selected finding.

    At most one investigation exists at a time. It is never persisted
    to the audit history.
    """

    selected_finding_id: str
    explanation: str
    explanation_status: ExplanationStatus = ExplanationStatus.PENDING
    remediation: Optional[Remediation] = None
    healing: bool = False

    @model_validator(mode="after")
    def remediation_only_after_healing(self):
        if self.healing and self.remediation is not None:
            raise ValueError(
                "remediation must not be populated while healing is in flight"
            )
        return self

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Audit history
# ---------------------------------------------------------------------------


CLEAN_SCAN_HEADLINE = "Clean Scan"


class AuditHistoryEntry(BaseModel):
    """One completed audit. Never mutated after creation."""

    completed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    target_name: str
    headline_finding: str
    result: VerdictResult
    estimated_impact: str

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatTurn(BaseModel):
    role: ChatRole
    text: str

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmissionStatus(str, Enum):
    """How a submitted audit ended, as seen from the entry point."""

    REJECTED_EMPTY = "rejected_empty"
    REJECTED_BUSY = "rejected_busy"
    UNRESOLVED = "unresolved"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"


# ---------------------------------------------------------------------------
# Snapshot (PUBLIC READ SURFACE)
# ---------------------------------------------------------------------------


class SessionSnapshot(BaseModel):
    """Point-in-time view of everything the presentation layer renders."""

    revision: int
    generation: int
    status: PipelineStatus
    target: Optional[TargetMetadata] = None
    stages: List[Stage] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)
    findings: List[Finding] = Field(default_factory=list)
    selected_finding: Optional[Finding] = None
    investigation: Optional[InvestigationSession] = None
    verdict: Optional[Verdict] = None
    history: List[AuditHistoryEntry] = Field(default_factory=list)
    chat_turns: List[ChatTurn] = Field(default_factory=list)
    chat_in_flight: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")
