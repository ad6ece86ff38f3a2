"""
Session Controller.

Top-level owner of all audit session state and the single path through
which that state is mutated.

Lifecycle:
    IDLE -> SCANNING -> ANALYZING -> {PASSED | FAILED}

HEALING is reported by the investigation sub-state and never replaces
the main status.

IMPORTANT:
- Every mutation happens synchronously between suspension points of a
  single event loop, so mutations are serialized without locks.
- Each audit chain carries the generation it was started under. Any
  result that resolves after ``reset()`` or a newer submission is
  discarded.
- ``reset()`` clears audit-scoped state only. The audit history ledger
  and (by default) the chat session are process-scoped.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from fortress.app.collaborators.outcome import CallPolicy, guarded_call
from fortress.app.collaborators.protocols import (
    Conversationalist,
    DataSource,
    Reasoner,
    StageScanner,
)
from fortress.app.config import FortressConfig
from fortress.app.events import (
    NullEventEmitter,
    SessionEvent,
    SessionEventEmitter,
    SessionEventType,
)
from fortress.app.pipeline.orchestrator import PipelineOrchestrator
from fortress.app.pipeline.registry import StageRegistry
from fortress.app.pipeline.verdict import VerdictSynthesizer
from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import (
    LogEntry,
    LogLevel,
    PipelineStatus,
    Stage,
    TargetMetadata,
    Verdict,
)
from fortress.app.schemas.session import (
    AuditHistoryEntry,
    ChatTurn,
    InvestigationSession,
    SessionSnapshot,
    SubmissionStatus,
)
from fortress.app.session.chat import DEFAULT_CHAT_INSTRUCTIONS, ChatSession
from fortress.app.session.findings import FindingStore
from fortress.app.session.history import AuditHistoryLedger
from fortress.app.session.investigation import InvestigationManager
from fortress.app.session.log_aggregator import LogAggregator

logger = logging.getLogger(__name__)


_IN_FLIGHT = frozenset({PipelineStatus.SCANNING, PipelineStatus.ANALYZING})


class AuditTicket(BaseModel):
    """Handle for one accepted submission, bound to its generation."""

    target_url: str
    generation: int

    model_config = ConfigDict(frozen=True, extra="forbid")


class _GenerationObserver:
    """
    Pipeline observer bound to one audit generation.

    Writes from a superseded generation are dropped.
    """

    def __init__(self, controller: "SessionController", generation: int) -> None:
        self._controller = controller
        self._generation = generation

    @property
    def active(self) -> bool:
        return self._controller.generation == self._generation

    def stage_changed(self, stage: Stage) -> None:
        if not self.active:
            logger.debug("Dropping stale stage update %s", stage.id)
            return
        self._controller._apply_stage(stage)

    def log(self, level: LogLevel, message: str) -> None:
        if not self.active:
            logger.debug("Dropping stale log line: %s", message)
            return
        self._controller._append_log(level, message)


class SessionController:
    """
    Composes the stage registry, orchestrator, verdict synthesizer, log
    aggregator, finding store, investigation, history ledger and chat
    behind one mutation API.
    """

    def __init__(
        self,
        *,
        data_source: DataSource,
        scanners: Mapping[str, StageScanner],
        reasoner: Reasoner,
        conversationalist: Optional[Conversationalist] = None,
        registry: Optional[StageRegistry] = None,
        policy: Optional[CallPolicy] = None,
        chat_instructions: str = DEFAULT_CHAT_INSTRUCTIONS,
        clear_chat_on_reset: bool = False,
        emitter: Optional[SessionEventEmitter] = None,
    ) -> None:
        self._registry = registry or StageRegistry.default()
        self._policy = policy or CallPolicy()
        self._data_source = data_source
        self._emitter = emitter or NullEventEmitter()
        self._clear_chat_on_reset = clear_chat_on_reset

        self._orchestrator = PipelineOrchestrator(
            self._registry, scanners, policy=self._policy
        )
        self._verdict_synthesizer = VerdictSynthesizer(
            reasoner, policy=self._policy
        )

        self._logs = LogAggregator()
        self._findings = FindingStore()
        self._ledger = AuditHistoryLedger()
        self._investigation = InvestigationManager(
            reasoner,
            self._findings,
            policy=self._policy,
            on_change=self._commit,
            log=self._append_log,
        )
        self._chat = ChatSession(
            conversationalist or reasoner,  # type: ignore[arg-type]
            policy=self._policy,
            instructions=chat_instructions,
            on_change=self._commit,
        )

        self._status = PipelineStatus.IDLE
        self._target: Optional[TargetMetadata] = None
        self._stages: List[Stage] = self._registry.fresh()
        self._verdict: Optional[Verdict] = None
        self._generation = 0
        self._revision = 0

    # ------------------------------------------------------------------
    # Integration constructor (composition root)
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: FortressConfig,
        *,
        data_source: DataSource,
        scanners: Mapping[str, StageScanner],
        reasoner: Reasoner,
        conversationalist: Optional[Conversationalist] = None,
        emitter: Optional[SessionEventEmitter] = None,
    ) -> "SessionController":
        return cls(
            data_source=data_source,
            scanners=scanners,
            reasoner=reasoner,
            conversationalist=conversationalist,
            policy=config.call_policy(),
            chat_instructions=config.CHAT_SYSTEM_INSTRUCTION,
            clear_chat_on_reset=config.CLEAR_CHAT_ON_RESET,
            emitter=emitter,
        )

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def target(self) -> Optional[TargetMetadata]:
        return self._target

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    @property
    def logs(self) -> List[LogEntry]:
        return list(self._logs.snapshot())

    @property
    def findings(self) -> List[Finding]:
        return list(self._findings.findings)

    @property
    def verdict(self) -> Optional[Verdict]:
        return self._verdict

    @property
    def investigation(self) -> Optional[InvestigationSession]:
        return self._investigation.session

    @property
    def selected_finding(self) -> Optional[Finding]:
        session = self._investigation.session
        if session is None or session.selected_finding_id not in self._findings:
            return None
        return self._findings.get(session.selected_finding_id)

    @property
    def history(self) -> List[AuditHistoryEntry]:
        return list(self._ledger.entries())

    @property
    def chat(self) -> ChatSession:
        return self._chat

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            revision=self._revision,
            generation=self._generation,
            status=self._status,
            target=self._target,
            stages=self.stages,
            logs=self.logs,
            findings=self.findings,
            selected_finding=self.selected_finding,
            investigation=self.investigation,
            verdict=self._verdict,
            history=self.history,
            chat_turns=list(self._chat.turns),
            chat_in_flight=self._chat.in_flight,
        )

    # ------------------------------------------------------------------
    # Mutation path
    # ------------------------------------------------------------------

    def _commit(
        self,
        event_type: SessionEventType,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._revision += 1
        self._emitter.emit(
            SessionEvent(
                event_type=event_type,
                revision=self._revision,
                generation=self._generation,
                details=details,
            )
        )

    def _append_log(self, level: LogLevel, message: str) -> None:
        entry = LogEntry(level=level, message=message)
        self._logs.append(entry)
        self._commit(SessionEventType.LOG_APPENDED, entry.model_dump(mode="json"))

    def _apply_stage(self, stage: Stage) -> None:
        for index, current in enumerate(self._stages):
            if current.id == stage.id:
                self._stages[index] = current.advance(stage.status)
                self._commit(
                    SessionEventType.STAGE_UPDATED,
                    {"stage_id": stage.id, "status": stage.status.value},
                )
                return
        raise ValueError(f"Unknown stage id {stage.id!r}")

    def _set_status(self, status: PipelineStatus) -> None:
        self._status = status
        logger.info("Pipeline status -> %s", status.value)

    def _clear_audit_state(self) -> None:
        self._target = None
        self._stages = self._registry.fresh()
        self._findings.clear()
        self._verdict = None
        self._investigation.close()
        self._logs.clear()

    # ------------------------------------------------------------------
    # Audit lifecycle
    # ------------------------------------------------------------------

    def check_submission(self, target_url: str) -> Optional[SubmissionStatus]:
        """Return the rejection status for ``target_url``, or None if acceptable."""
        if not target_url or not target_url.strip():
            return SubmissionStatus.REJECTED_EMPTY
        if self._status in _IN_FLIGHT:
            return SubmissionStatus.REJECTED_BUSY
        return None

    def begin(self, target_url: str) -> Optional[AuditTicket]:
        """
        Accept a submission and reset audit-scoped state.

        Returns None, without mutating anything, if the submission is
        rejected.
        """
        rejection = self.check_submission(target_url)
        if rejection is not None:
            logger.info("Submission rejected (%s)", rejection.value)
            return None

        target_url = target_url.strip()
        self._generation += 1
        self._clear_audit_state()
        self._set_status(PipelineStatus.SCANNING)
        self._commit(SessionEventType.AUDIT_STARTED, {"target": target_url})
        self._append_log(LogLevel.SYSTEM, "Activating 8-Layer ML Defense Pipeline...")

        return AuditTicket(target_url=target_url, generation=self._generation)

    async def run(self, ticket: AuditTicket) -> SubmissionStatus:
        """
        Drive an accepted audit to completion.

        Resolution, stages and verdict synthesis are awaited in order.
        If the session is reset or superseded meanwhile, the chain stops
        writing and reports SUPERSEDED.
        """
        observer = _GenerationObserver(self, ticket.generation)

        try:
            # ----------------------------------------------------------
            # 1. Target resolution
            # ----------------------------------------------------------
            resolved = await guarded_call(
                "target resolution",
                self._data_source.fetch,
                ticket.target_url,
                policy=self._policy,
            )
            if not observer.active:
                return SubmissionStatus.SUPERSEDED

            metadata = resolved.value if resolved.ok else None
            if not isinstance(metadata, TargetMetadata):
                reason = resolved.reason or "target not found"
                self._append_log(
                    LogLevel.SYSTEM,
                    f"Target could not be resolved: {ticket.target_url} ({reason})",
                )
                self._set_status(PipelineStatus.IDLE)
                self._commit(
                    SessionEventType.TARGET_UNRESOLVED,
                    {"target": ticket.target_url, "reason": reason},
                )
                return SubmissionStatus.UNRESOLVED

            self._target = metadata
            self._append_log(LogLevel.SYSTEM, f"Target linked: {metadata.full_name}")

            # ----------------------------------------------------------
            # 2. Stages (failure contained per stage)
            # ----------------------------------------------------------
            result = await self._orchestrator.run(metadata, observer)
            if not observer.active or result.aborted:
                return SubmissionStatus.SUPERSEDED

            dropped = self._findings.replace(result.findings)
            for finding_id in dropped:
                self._append_log(
                    LogLevel.WARN, f"Duplicate finding {finding_id} dropped"
                )
            self._commit(
                SessionEventType.FINDINGS_REPLACED,
                {"count": len(self._findings)},
            )

            # ----------------------------------------------------------
            # 3. Verdict (only once every stage is terminal)
            # ----------------------------------------------------------
            if not all(s.status.terminal for s in self._stages):
                raise RuntimeError("verdict requested before all stages finished")

            self._set_status(PipelineStatus.ANALYZING)
            self._append_log(LogLevel.SYSTEM, "Synthesizing Verdict (Weighted Bayesian)...")

            verdict = await self._verdict_synthesizer.synthesize(
                self.findings, observer
            )
            if not observer.active:
                return SubmissionStatus.SUPERSEDED

            self._verdict = verdict
            self._set_status(verdict.pipeline_status)
            self._commit(
                SessionEventType.VERDICT_READY,
                verdict.model_dump(mode="json"),
            )
            self._append_log(
                LogLevel.SYSTEM, f"Audit Finalized. Posture: {verdict.result.value}"
            )

            # ----------------------------------------------------------
            # 4. History
            # ----------------------------------------------------------
            entry = self._ledger.record(
                target_name=metadata.name,
                findings=self.findings,
                verdict=verdict,
            )
            self._commit(
                SessionEventType.HISTORY_APPENDED,
                entry.model_dump(mode="json"),
            )
            self._commit(
                SessionEventType.AUDIT_COMPLETED,
                {"status": self._status.value, "findings": len(self._findings)},
            )
            return SubmissionStatus.COMPLETED

        except Exception as exc:
            if observer.active:
                self._append_log(LogLevel.ERROR, f"Audit aborted: {exc}")
                self._set_status(PipelineStatus.IDLE)
            logger.exception("Audit chain for %s failed", ticket.target_url)
            raise

    async def submit(self, target_url: str) -> SubmissionStatus:
        """Entry point: guard, reset audit-scoped state, run the chain."""
        ticket = self.begin(target_url)
        if ticket is None:
            return self.check_submission(target_url)
        return await self.run(ticket)

    def reset(self) -> None:
        """
        Return to IDLE from any state.

        In-flight collaborator calls are not cancelled; their results are
        discarded when they resolve.
        """
        self._generation += 1
        self._clear_audit_state()
        self._set_status(PipelineStatus.IDLE)
        if self._clear_chat_on_reset:
            self._chat.clear()
        self._commit(SessionEventType.SESSION_RESET)
        logger.info("Core reset successful. Environmental memory purged.")

    # ------------------------------------------------------------------
    # Investigation and chat (independent chains)
    # ------------------------------------------------------------------

    async def open_investigation(self, finding_id: str) -> None:
        await self._investigation.open(finding_id)

    async def request_remediation(self) -> None:
        await self._investigation.request_remediation()

    def close_investigation(self) -> None:
        self._investigation.close()

    async def send_chat(self, text: str) -> Optional[ChatTurn]:
        return await self._chat.send(text)

    def clear_chat(self) -> None:
        self._chat.clear()
