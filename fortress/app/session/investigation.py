"""
Investigation Session.

Deep-dive sub-state for one selected finding: an explanation request
and an optional remediation request, both against the reasoning
collaborator.

IMPORTANT:
- At most one investigation exists at a time.
- Every open, close and reset invalidates in-flight requests. A result
  that resolves for an invalidated investigation is discarded.
- Collaborator failure text is kept as content, tagged DEGRADED.
- Nothing here touches the main pipeline status.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError

from fortress.app.collaborators.outcome import CallPolicy, guarded_call
from fortress.app.collaborators.protocols import FixSuggestion, Reasoner
from fortress.app.events.models import SessionEventType
from fortress.app.schemas.pipeline import LogLevel
from fortress.app.schemas.session import (
    ExplanationStatus,
    InvestigationSession,
    Remediation,
)
from fortress.app.session.findings import FindingStore

logger = logging.getLogger(__name__)


PENDING_EXPLANATION = "Interrogating XAI Attribution Layer (SHAP values)..."

ChangeHook = Callable[[SessionEventType, Optional[dict]], None]
LogHook = Callable[[LogLevel, str], None]


class InvestigationManager:
    def __init__(
        self,
        reasoner: Reasoner,
        findings: FindingStore,
        *,
        policy: CallPolicy,
        on_change: ChangeHook,
        log: LogHook,
    ) -> None:
        self._reasoner = reasoner
        self._findings = findings
        self._policy = policy
        self._on_change = on_change
        self._log = log

        self._session: Optional[InvestigationSession] = None
        self._token = 0

    @property
    def session(self) -> Optional[InvestigationSession]:
        return self._session

    def _set(self, session: Optional[InvestigationSession]) -> None:
        self._session = session
        if session is None:
            self._on_change(SessionEventType.INVESTIGATION_CLOSED, None)
        else:
            self._on_change(
                SessionEventType.INVESTIGATION_UPDATED,
                session.model_dump(mode="json"),
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def open(self, finding_id: str) -> None:
        """
        Select a finding and request its explanation.

        Raises UnknownFindingError before touching any state if the
        finding is not in the current batch.
        """
        finding = self._findings.get(finding_id)

        self._token += 1
        token = self._token
        self._set(
            InvestigationSession(
                selected_finding_id=finding.id,
                explanation=PENDING_EXPLANATION,
            )
        )

        outcome = await guarded_call(
            f"explanation {finding.id}",
            self._reasoner.explain,
            finding,
            policy=self._policy,
        )

        if token != self._token or self._session is None:
            logger.debug("Discarding stale explanation for %s", finding.id)
            return

        if outcome.ok:
            update = {
                "explanation": str(outcome.value),
                "explanation_status": ExplanationStatus.OK,
            }
        else:
            update = {
                "explanation": outcome.reason,
                "explanation_status": ExplanationStatus.DEGRADED,
            }
        self._set(self._session.model_copy(update=update))

    async def request_remediation(self) -> None:
        """
        Ask the reasoner for a fix for the selected finding.

        No-op when no investigation is open or a request is already
        in flight. The trigger line is logged before the first await, so
        it always lands in the log of the audit that owns the session.
        """
        session = self._session
        if session is None or session.healing:
            return

        token = self._token
        finding = self._findings.get(session.selected_finding_id)

        self._set(session.model_copy(update={"healing": True, "remediation": None}))
        self._log(LogLevel.SYSTEM, f"Triggering Patch Synthesis for {finding.id}")

        outcome = await guarded_call(
            f"remediation {finding.id}",
            self._reasoner.suggest_fix,
            finding,
            policy=self._policy,
        )

        if token != self._token or self._session is None:
            logger.debug("Discarding stale remediation for %s", finding.id)
            return

        remediation = None
        if outcome.ok:
            try:
                suggestion = FixSuggestion.model_validate(outcome.value)
                remediation = Remediation(
                    suggested_fix=suggestion.fix,
                    diff=suggestion.diff,
                )
            except ValidationError as exc:
                logger.warning("Reasoner returned an invalid fix: %s", exc)
                remediation = Remediation(
                    suggested_fix="Patch synthesis returned a malformed payload.",
                    degraded=True,
                )
        else:
            remediation = Remediation(suggested_fix=outcome.reason, degraded=True)

        self._set(
            self._session.model_copy(
                update={"healing": False, "remediation": remediation}
            )
        )

    def close(self) -> None:
        """Discard the investigation. Nothing is persisted."""
        self._token += 1
        if self._session is not None:
            self._set(None)
