"""
Collaborator interfaces consumed by the audit core.

Implementations are opaque. The core only relies on the request and
response shapes declared here. Implementations MAY raise: failures are
normalized by ``guarded_call`` at the call site.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import Stage, TargetMetadata, Verdict


class FixSuggestion(BaseModel):
    """Raw remediation payload returned by a reasoner."""

    fix: str
    diff: str = ""

    model_config = ConfigDict(frozen=True, extra="forbid")


class DataSource(Protocol):
    async def fetch(self, target_url: str) -> Optional[TargetMetadata]:
        """Resolve a target. ``None`` means the target is unresolvable."""
        ...


class StageScanner(Protocol):
    async def run(self, stage: Stage, target: TargetMetadata) -> List[Finding]:
        """Run one analysis layer against the target."""
        ...


class Reasoner(Protocol):
    async def explain(self, finding: Finding) -> str:
        ...

    async def suggest_fix(self, finding: Finding) -> FixSuggestion:
        ...

    async def synthesize_verdict(self, findings: List[Finding]) -> Verdict:
        ...


class Conversationalist(Protocol):
    async def converse(self, text: str, session_instructions: str) -> str:
        ...
