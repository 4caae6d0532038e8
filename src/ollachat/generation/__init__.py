"""Generation module for ollachat.

Streams a chat reply from the inference server into the conversation
store, with cancellation and error recovery.
"""

from .actor import StoreActor
from .events import ChatEvent, ChatEventKind, EventBus
from .service import ChatGeneration, ChatService, build_payload
from .session import GenerationHandle, GenerationSession, GenerationState

__all__ = [
    "ChatEvent",
    "ChatEventKind",
    "ChatGeneration",
    "ChatService",
    "EventBus",
    "GenerationHandle",
    "GenerationSession",
    "GenerationState",
    "StoreActor",
    "build_payload",
]
