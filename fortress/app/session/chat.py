"""
Chat Session.

Conversational turn list with an in-flight indicator. Fully decoupled
from the audit pipeline: it may run concurrently with any phase and
its lifecycle is process-scoped unless explicitly cleared.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from fortress.app.collaborators.outcome import CallPolicy, guarded_call
from fortress.app.collaborators.protocols import Conversationalist
from fortress.app.events.models import SessionEventType
from fortress.app.schemas.session import ChatRole, ChatTurn

logger = logging.getLogger(__name__)


DEFAULT_CHAT_INSTRUCTIONS = (
    "You are the CodeFortress Security AI. Help users navigate CI/CD security."
)
EMPTY_REPLY_TEXT = "Connection lost."
FAILURE_REPLY_TEXT = "Service error."


class ChatSession:
    def __init__(
        self,
        conversationalist: Conversationalist,
        *,
        policy: CallPolicy,
        instructions: str = DEFAULT_CHAT_INSTRUCTIONS,
        on_change: Optional[Callable[[SessionEventType, Optional[dict]], None]] = None,
    ) -> None:
        self._conversationalist = conversationalist
        self._policy = policy
        self._instructions = instructions
        self._on_change = on_change or (lambda event_type, details: None)

        self._turns: List[ChatTurn] = []
        self._pending = 0
        self._generation = 0

    @property
    def turns(self) -> Tuple[ChatTurn, ...]:
        return tuple(self._turns)

    @property
    def in_flight(self) -> bool:
        return self._pending > 0

    def _notify(self) -> None:
        self._on_change(
            SessionEventType.CHAT_UPDATED,
            {"turns": len(self._turns), "in_flight": self.in_flight},
        )

    async def send(self, text: str) -> Optional[ChatTurn]:
        """
        Send one user message and await the assistant's reply.

        Returns the assistant turn, or None if the message was blank or
        the chat was cleared while the reply was in flight.
        """
        if not text or not text.strip():
            return None

        generation = self._generation
        self._pending += 1
        self._turns.append(ChatTurn(role=ChatRole.USER, text=text))
        self._notify()

        try:
            outcome = await guarded_call(
                "chat reply",
                self._conversationalist.converse,
                text,
                self._instructions,
                policy=self._policy,
            )

            if generation != self._generation:
                logger.debug("Discarding chat reply for a cleared conversation")
                return None

            if outcome.ok:
                reply_text = str(outcome.value or "") or EMPTY_REPLY_TEXT
            else:
                reply_text = FAILURE_REPLY_TEXT

            turn = ChatTurn(role=ChatRole.ASSISTANT, text=reply_text)
            self._turns.append(turn)
            return turn
        finally:
            self._pending -= 1
            self._notify()

    def clear(self) -> None:
        self._generation += 1
        self._turns = []
        self._notify()
