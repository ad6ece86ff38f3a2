"""
Pipeline Orchestrator.

Drives the registered stages in registry order against one resolved
target.

IMPORTANT:
The orchestrator is a DUMB AUTHORITY.

It MUST NOT:
- interpret findings
- decide the verdict
- de-duplicate findings

Its sole responsibilities are:
- enforcing stage execution order
- moving each stage PENDING -> RUNNING -> {COMPLETED | ERROR}
- containing stage failures (a failed stage never aborts the run)
- returning the union of findings in discovery order
"""

from __future__ import annotations

import logging
import time
from typing import List, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError

from fortress.app.collaborators.outcome import (
    CallPolicy,
    Outcome,
    describe_exception,
    guarded_call,
)
from fortress.app.collaborators.protocols import StageScanner
from fortress.app.pipeline.registry import StageRegistry
from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import (
    LogLevel,
    PipelineRunResult,
    Stage,
    StageResult,
    StageStatus,
    TargetMetadata,
)

logger = logging.getLogger(__name__)


class PipelineObserver(Protocol):
    """
    Receives stage transitions and log lines as they happen.

    ``active`` turns False once the session that started the run has
    been reset or superseded. The orchestrator then stops launching
    further stages.
    """

    @property
    def active(self) -> bool:
        ...

    def stage_changed(self, stage: Stage) -> None:
        ...

    def log(self, level: LogLevel, message: str) -> None:
        ...


class NullPipelineObserver:
    """A safe no-op observer for standalone runs and tests."""

    active = True

    def stage_changed(self, stage: Stage) -> None:
        return

    def log(self, level: LogLevel, message: str) -> None:
        return


def _normalize_scan(outcome: Outcome) -> Tuple[Optional[str], List[Finding]]:
    """Turn a scanner outcome into ``(error, findings)``."""
    if outcome.degraded:
        return outcome.reason, []
    try:
        return None, [Finding.model_validate(f) for f in (outcome.value or [])]
    except (ValidationError, TypeError) as exc:
        return f"malformed scanner output: {describe_exception(exc)}", []


class PipelineOrchestrator:
    """
    Compose and execute analysis stages in registry order.

    Each stage is bound to one scanning collaborator by stage id. A stage
    with no bound scanner is marked ERROR like any other stage failure.
    """

    def __init__(
        self,
        registry: StageRegistry,
        scanners: Mapping[str, StageScanner],
        *,
        policy: Optional[CallPolicy] = None,
    ) -> None:
        self._registry = registry
        self._scanners = dict(scanners)
        self._policy = policy or CallPolicy()

    async def run(
        self,
        target: TargetMetadata,
        observer: Optional[PipelineObserver] = None,
    ) -> PipelineRunResult:
        observer = observer or NullPipelineObserver()

        findings: List[Finding] = []
        stage_results: List[StageResult] = []
        stages = self._registry.fresh()
        total = len(stages)
        pipeline_start = time.monotonic()

        logger.info(
            "Pipeline starting with %d stages targeting %s",
            total,
            target.full_name,
        )

        for position, stage in enumerate(stages, start=1):
            if not observer.active:
                logger.info(
                    "Pipeline for %s superseded before %s; stopping",
                    target.full_name,
                    stage.id,
                )
                return PipelineRunResult(
                    findings=findings,
                    stage_results=stage_results,
                    aborted=True,
                )

            stage = stage.advance(StageStatus.RUNNING)
            observer.stage_changed(stage)
            observer.log(
                LogLevel.SYSTEM,
                f"Layer {position}/{total}: {stage.label} engaged",
            )

            stage_start = time.monotonic()
            scanner = self._scanners.get(stage.id)

            if scanner is None:
                error: Optional[str] = "no scanner bound to stage"
                discovered: List[Finding] = []
            else:
                outcome = await guarded_call(
                    f"stage {stage.id}",
                    scanner.run,
                    stage,
                    target,
                    policy=self._policy,
                )
                error, discovered = _normalize_scan(outcome)

            duration = time.monotonic() - stage_start

            if error is None:
                findings.extend(discovered)
                stage = stage.advance(StageStatus.COMPLETED)
                observer.stage_changed(stage)
                observer.log(
                    LogLevel.INFO,
                    f"{stage.label} completed: {len(discovered)} finding(s)",
                )
                for finding in discovered:
                    observer.log(
                        LogLevel.WARN,
                        f"[{finding.severity.value}] {finding.id}: {finding.title}",
                    )
            else:
                # Non-fatal: mark ERROR and continue with the next stage
                stage = stage.advance(StageStatus.ERROR)
                observer.stage_changed(stage)
                observer.log(LogLevel.ERROR, f"{stage.label} failed: {error}")
                logger.error(
                    "Stage %s failed with %s (continuing)", stage.id, error
                )

            stage_results.append(
                StageResult(
                    stage_id=stage.id,
                    status=stage.status,
                    duration_seconds=duration,
                    findings_count=len(discovered),
                    error=error,
                )
            )

        logger.info(
            "Pipeline completed in %.1fs: %d stages, %d findings, %d errors",
            time.monotonic() - pipeline_start,
            len(stage_results),
            len(findings),
            sum(1 for r in stage_results if r.error is not None),
        )

        return PipelineRunResult(findings=findings, stage_results=stage_results)
