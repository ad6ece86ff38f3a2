"""
Log Aggregator.

Append-only, time-ordered sink for the diagnostic entries emitted by
every audit phase. Entries are mirrored to application logging.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

from fortress.app.schemas.pipeline import LogEntry, LogLevel

logger = logging.getLogger(__name__)


_MIRROR_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SYSTEM: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LogAggregator:
    """
    Single-producer log sink.

    ``append`` is O(1), never fails and never drops an entry. No size
    cap is applied; truncation is a presentation concern.
    """

    def __init__(self) -> None:
        self._entries: List[LogEntry] = []

    def append(self, entry: LogEntry) -> None:
        self._entries.append(entry)
        logger.log(
            _MIRROR_LEVELS[entry.level],
            "[%s] %s",
            entry.level.value,
            entry.message,
        )

    def snapshot(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
