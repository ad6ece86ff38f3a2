from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List

from fortress.app.events.models import SessionEvent
from fortress.app.events.emitter import SessionEventEmitter

logger = logging.getLogger(__name__)


class MemoryQueueEventEmitter(SessionEventEmitter):
    """
    In-memory async event emitter suitable for SSE streaming.

    Properties:
    - single-consumer
    - non-blocking for the session mutation path
    - deterministic ordering
    - terminates cleanly when closed
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: SessionEvent) -> None:
        if self._closed:
            return

        try:
            self._queue.put_nowait(event)
        except Exception:
            # Fail-safe: never let observability break the session
            logger.debug("dropping event %s", event.event_type.value)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[SessionEvent]:
        """
        Async generator yielding emitted events in order.
        """
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event


class BroadcastEventEmitter(SessionEventEmitter):
    """
    Fan-out emitter: one controller, any number of streaming clients.

    Each subscriber gets its own ``MemoryQueueEventEmitter``.
    """

    def __init__(self) -> None:
        self._subscribers: List[MemoryQueueEventEmitter] = []

    def subscribe(self) -> MemoryQueueEventEmitter:
        subscriber = MemoryQueueEventEmitter()
        self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: MemoryQueueEventEmitter) -> None:
        subscriber.close()
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: SessionEvent) -> None:
        for subscriber in list(self._subscribers):
            subscriber.emit(event)
