"""
Standardized finding schema.

Defines the canonical structure used to report vulnerabilities and risk
signals discovered by the analysis stages of a security audit.

This schema is:
- authoritative for the live session
- immutable once produced by a scan
- stage-traceable
- severity-graded
- risk-scored

All findings held by the Finding Store MUST conform to this schema.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import ConfigDict


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """
    Severity level of a finding.

    Ordering is intentional and MUST remain stable.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FindingCategory(str, Enum):
    """
    Analysis layer taxonomy.

    Each category corresponds to the kind of analysis that surfaced
    the finding, not to the stage that happened to report it.
    """

    SECRET = "SECRET"
    SAST = "SAST"
    DAST = "DAST"
    IAC = "IAC"
    DEP = "DEP"
    SUPPLY_CHAIN = "SUPPLY_CHAIN"
    QUANTUM = "QUANTUM"
    CHAOS = "CHAOS"


# ---------------------------------------------------------------------------
# Canonical Finding Object (PUBLIC, FROZEN)
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """
    Canonical audit finding.

    Represents a single immutable issue discovered during a scan.
    A batch of findings is replaced wholesale when a new scan starts.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Stable identifier for the finding (e.g. 'FORT-9102')",
    )

    category: FindingCategory = Field(
        ...,
        description="Analysis layer that surfaced the finding",
    )

    title: str = Field(
        ...,
        description="Short human-readable summary of the finding",
    )

    description: str = Field(
        ...,
        description="Clear explanation of what the issue is",
    )

    severity: Severity = Field(
        ...,
        description="Severity level of the finding",
    )

    file: Optional[str] = Field(
        None,
        description="Repository-relative path of the affected file",
    )

    line: Optional[int] = Field(
        None,
        ge=1,
        description="1-based line number within the affected file",
    )

    risk_score: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Normalized exploitability estimate",
    )

    remediation_hint: Optional[str] = Field(
        None,
        description="Optional advisory remediation suggestion",
    )

    exploit_path: Optional[List[str]] = Field(
        None,
        description="Ordered attack steps leading to exploitation",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
