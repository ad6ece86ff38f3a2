"""
Audit History Ledger.

Process-scoped record of completed audits, most recent first. Survives
session resets. Entries are never mutated or removed.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import Verdict
from fortress.app.schemas.session import AuditHistoryEntry, CLEAN_SCAN_HEADLINE

# Estimated remediation cost avoided per finding, in thousands of dollars
IMPACT_PER_FINDING_K = 15


def estimate_impact(findings: Sequence[Finding]) -> str:
    if not findings:
        return "$0"
    return f"${len(findings) * IMPACT_PER_FINDING_K}k"


class AuditHistoryLedger:
    def __init__(self) -> None:
        self._entries: List[AuditHistoryEntry] = []

    def record(
        self,
        *,
        target_name: str,
        findings: Sequence[Finding],
        verdict: Verdict,
    ) -> AuditHistoryEntry:
        """Build the entry for one finished audit and prepend it."""
        entry = AuditHistoryEntry(
            target_name=target_name,
            headline_finding=findings[0].title if findings else CLEAN_SCAN_HEADLINE,
            result=verdict.result,
            estimated_impact=estimate_impact(findings),
        )
        self._entries.insert(0, entry)
        return entry

    def entries(self) -> Tuple[AuditHistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
