"""
Ollachat: a streaming chat client core for local Ollama models.

Each subpackage hides one design decision: how the server is reached
(transport), how its stream is framed (stream), how a generation runs and
is cancelled (generation), and how conversations are stored (conversation).
"""

__version__ = "0.1.0"

from .conversation import (
    Chat,
    ConversationStore,
    Message,
    MessageRole,
    create_conversation_store,
    order_messages,
)
from .errors import GenerationFailedError, OllachatError, TransportError
from .generation import ChatGeneration, ChatService, GenerationSession, GenerationState
from .transport import GenerationRequest, InferenceTransport, create_transport

__all__ = [
    "Chat",
    "ChatGeneration",
    "ChatService",
    "ConversationStore",
    "GenerationFailedError",
    "GenerationRequest",
    "GenerationSession",
    "GenerationState",
    "InferenceTransport",
    "Message",
    "MessageRole",
    "OllachatError",
    "TransportError",
    "create_conversation_store",
    "create_transport",
    "order_messages",
]
