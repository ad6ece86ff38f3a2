from .models import SessionEvent, SessionEventType
from .emitter import SessionEventEmitter, NullEventEmitter
from .memory_emitter import MemoryQueueEventEmitter, BroadcastEventEmitter

__all__ = [
    "SessionEvent",
    "SessionEventType",
    "SessionEventEmitter",
    "NullEventEmitter",
    "MemoryQueueEventEmitter",
    "BroadcastEventEmitter",
]
