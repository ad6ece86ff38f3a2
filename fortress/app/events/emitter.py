from __future__ import annotations

from typing import Protocol

from fortress.app.events.models import SessionEvent


class SessionEventEmitter(Protocol):
    """
    Interface for broadcasting session observations.

    Implementations must be:
    - non-blocking (emission happens inside the single mutation path)
    - fail-safe (emission failures must not break the session)
    - observational only
    """

    def emit(self, event: SessionEvent) -> None:
        ...


class NullEventEmitter:
    """
    A safe no-op emitter.

    Used when:
    - no client is streaming
    - tests that do not care about events
    """

    def emit(self, event: SessionEvent) -> None:
        return
