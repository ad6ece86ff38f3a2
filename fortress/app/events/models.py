from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# ----------------------------------------------------------------------
# Event Types (Finite and Versioned)
# ----------------------------------------------------------------------
class SessionEventType(str, Enum):
    """
    Observations emitted by the Session Controller after each mutation.

    NOTE:
    This enum is finite and versioned.
    New entries must preserve observational semantics.
    """

    # ------------------------------------------------------------------
    # Audit lifecycle
    # ------------------------------------------------------------------
    AUDIT_STARTED = "audit_started"
    TARGET_UNRESOLVED = "target_unresolved"
    STAGE_UPDATED = "stage_updated"
    FINDINGS_REPLACED = "findings_replaced"
    VERDICT_READY = "verdict_ready"
    AUDIT_COMPLETED = "audit_completed"
    HISTORY_APPENDED = "history_appended"
    SESSION_RESET = "session_reset"

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    LOG_APPENDED = "log_appended"

    # ------------------------------------------------------------------
    # Independent chains
    # ------------------------------------------------------------------
    INVESTIGATION_UPDATED = "investigation_updated"
    INVESTIGATION_CLOSED = "investigation_closed"
    CHAT_UPDATED = "chat_updated"


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class SessionEvent(BaseModel):
    """
    An immutable observation of a session state change.

    Events are:
    - strictly observational
    - transport-agnostic
    - not authoritative (the snapshot is)
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: SessionEventType
    revision: int = Field(..., ge=0, description="Snapshot revision after the change")
    generation: int = Field(..., ge=0, description="Audit generation at emission")

    details: Optional[Dict[str, Any]] = None

    def to_sse_payload(self) -> str:
        data = json.dumps(
            self.model_dump(mode="json"),
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return f"event: {self.event_type.value}\ndata: {data}\n\n"

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
