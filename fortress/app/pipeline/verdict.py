"""
Verdict Synthesizer Adapter.

Invokes the reasoning collaborator once every stage is terminal and
maps its answer to a ``Verdict``.

IMPORTANT:
- ``synthesize`` ALWAYS returns a verdict. An unreachable or misbehaving
  reasoner yields a low-confidence WARN.
- An empty finding batch never yields FAIL.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import ValidationError

from fortress.app.collaborators.outcome import CallPolicy, guarded_call
from fortress.app.collaborators.protocols import Reasoner
from fortress.app.pipeline.orchestrator import (
    NullPipelineObserver,
    PipelineObserver,
)
from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import LogLevel, Verdict, VerdictResult

logger = logging.getLogger(__name__)


DEGRADED_CONFIDENCE = 0.1


def degraded_verdict(reason: str) -> Verdict:
    return Verdict(
        result=VerdictResult.WARN,
        action="Manual review required",
        confidence=DEGRADED_CONFIDENCE,
        explanation=f"Decision intelligence unavailable: {reason}",
    )


class VerdictSynthesizer:
    def __init__(
        self,
        reasoner: Reasoner,
        *,
        policy: Optional[CallPolicy] = None,
    ) -> None:
        self._reasoner = reasoner
        self._policy = policy or CallPolicy()

    async def synthesize(
        self,
        findings: List[Finding],
        observer: Optional[PipelineObserver] = None,
    ) -> Verdict:
        observer = observer or NullPipelineObserver()

        outcome = await guarded_call(
            "verdict synthesis",
            self._reasoner.synthesize_verdict,
            list(findings),
            policy=self._policy,
        )

        if outcome.degraded:
            observer.log(
                LogLevel.WARN,
                f"Verdict synthesis degraded: {outcome.reason}",
            )
            return degraded_verdict(outcome.reason)

        try:
            verdict = Verdict.model_validate(outcome.value)
        except ValidationError as exc:
            logger.warning("Reasoner returned an invalid verdict: %s", exc)
            observer.log(
                LogLevel.WARN,
                "Verdict synthesis degraded: malformed verdict payload",
            )
            return degraded_verdict("malformed verdict payload")

        if not findings and verdict.result == VerdictResult.FAIL:
            logger.warning("Reasoner returned FAIL for an empty batch; downgrading")
            observer.log(
                LogLevel.WARN,
                "FAIL verdict without findings downgraded to WARN",
            )
            verdict = verdict.model_copy(update={"result": VerdictResult.WARN})

        return verdict
