"""
Deterministic offline collaborators.

Used when no model provider is configured, for local demos and as the
default wiring of the HTTP service. They never call external services
and produce the same output for the same input.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from fortress.app.collaborators.protocols import FixSuggestion
from fortress.app.schemas.findings import Finding, FindingCategory, Severity
from fortress.app.schemas.pipeline import (
    Stage,
    TargetMetadata,
    Verdict,
    VerdictResult,
)


DEFAULT_FINDING_CATALOG: Dict[str, List[Finding]] = {
    "secret_ml": [
        Finding(
            id="FORT-9102",
            category=FindingCategory.SECRET,
            title="Secret Prediction Anomaly",
            description=(
                "XGBoost classifier predicts a 98% likelihood of a GCP "
                "Service Account key exposure based on variable naming "
                "vectors and Shannon entropy analysis."
            ),
            severity=Severity.CRITICAL,
            file="infra/deployment/secrets.json",
            line=8,
            risk_score=0.98,
            exploit_path=[
                "Public Repo Access",
                "Secret Exfiltration",
                "Cloud Resource Hijacking",
            ],
            remediation_hint=(
                "Rotate the service account key and move to JIT "
                "credential injection."
            ),
        )
    ],
}


class SimulatedStageScanner:
    """Replays a fixed finding catalog keyed by stage id."""

    def __init__(
        self,
        catalog: Optional[Mapping[str, Sequence[Finding]]] = None,
    ) -> None:
        self._catalog = dict(
            DEFAULT_FINDING_CATALOG if catalog is None else catalog
        )

    async def run(self, stage: Stage, target: TargetMetadata) -> List[Finding]:
        return list(self._catalog.get(stage.id, []))


class SimulatedReasoner:
    """
    Rule-based stand-in for the reasoning and conversational model.

    Verdict rules:
    - any CRITICAL finding -> FAIL
    - any HIGH finding -> WARN
    - otherwise, if every finding carries a remediation hint -> AUTO_FIX
    - otherwise (including an empty batch) -> PASS
    """

    async def synthesize_verdict(self, findings: List[Finding]) -> Verdict:
        if not findings:
            return Verdict(
                result=VerdictResult.PASS,
                action="Promote build",
                confidence=0.95,
                explanation="No findings were reported by any analysis layer.",
            )

        severities = {f.severity for f in findings}
        peak_risk = max(f.risk_score for f in findings)

        if Severity.CRITICAL in severities:
            critical = [f for f in findings if f.severity == Severity.CRITICAL]
            return Verdict(
                result=VerdictResult.FAIL,
                action="Block deployment",
                confidence=peak_risk,
                explanation=(
                    f"{len(critical)} critical finding(s), led by "
                    f"'{critical[0].title}'."
                ),
            )

        if Severity.HIGH in severities:
            return Verdict(
                result=VerdictResult.WARN,
                action="Require security review",
                confidence=peak_risk,
                explanation="High severity findings require manual review.",
            )

        if all(f.remediation_hint for f in findings):
            return Verdict(
                result=VerdictResult.AUTO_FIX,
                action="Apply synthesized patches",
                confidence=peak_risk,
                explanation="All findings have known remediations.",
            )

        return Verdict(
            result=VerdictResult.PASS,
            action="Promote build",
            confidence=1.0 - peak_risk,
            explanation="Only low impact findings were reported.",
        )

    async def explain(self, finding: Finding) -> str:
        location = finding.file or "an unspecified location"
        if finding.line is not None:
            location = f"{location}:{finding.line}"

        parts = [
            f"{finding.title} ({finding.severity.value}) at {location}.",
            finding.description,
            f"Estimated exploitability: {finding.risk_score:.0%}.",
        ]
        if finding.exploit_path:
            parts.append("Attack path: " + " -> ".join(finding.exploit_path) + ".")
        return " ".join(parts)

    async def suggest_fix(self, finding: Finding) -> FixSuggestion:
        fix = finding.remediation_hint or (
            f"Review and harden the code flagged by {finding.id}."
        )
        path = finding.file or "UNKNOWN"
        line = finding.line or 1
        diff = (
            f"--- a/{path}\n"
            f"+++ b/{path}\n"
            f"@@ -{line},1 +{line},1 @@\n"
            f"-<vulnerable line flagged by {finding.id}>\n"
            f"+<patched line: {fix}>\n"
        )
        return FixSuggestion(fix=fix, diff=diff)

    async def converse(self, text: str, session_instructions: str) -> str:
        return (
            "The assistant is running in offline mode. Configure a model "
            "provider for conversational answers."
        )
