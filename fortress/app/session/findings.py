"""
Finding Store.

Holds the finding batch of the latest completed scan. A new batch
replaces the previous one wholesale.

Duplicate ids: the first occurrence wins, later ones are dropped.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from fortress.app.schemas.findings import Finding

logger = logging.getLogger(__name__)


class UnknownFindingError(LookupError):
    """Raised when a finding id is not part of the current batch."""


class FindingStore:
    def __init__(self) -> None:
        self._findings: Tuple[Finding, ...] = ()
        self._index: Dict[str, Finding] = {}

    def replace(self, batch: Iterable[Finding]) -> List[str]:
        """
        Replace the stored batch, preserving discovery order.

        Returns the ids of dropped duplicates, in the order dropped.
        """
        kept: List[Finding] = []
        index: Dict[str, Finding] = {}
        dropped: List[str] = []

        for finding in batch:
            if finding.id in index:
                dropped.append(finding.id)
                continue
            index[finding.id] = finding
            kept.append(finding)

        if dropped:
            logger.warning(
                "Dropped %d duplicate finding(s): %s",
                len(dropped),
                ", ".join(dropped),
            )

        self._findings = tuple(kept)
        self._index = index
        return dropped

    def clear(self) -> None:
        self._findings = ()
        self._index = {}

    def get(self, finding_id: str) -> Finding:
        try:
            return self._index[finding_id]
        except KeyError:
            raise UnknownFindingError(
                f"Finding {finding_id!r} is not in the current batch"
            ) from None

    def __contains__(self, finding_id: object) -> bool:
        return finding_id in self._index

    @property
    def findings(self) -> Tuple[Finding, ...]:
        return self._findings

    def __len__(self) -> int:
        return len(self._findings)
