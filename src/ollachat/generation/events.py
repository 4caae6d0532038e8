"""Event channel between the chat service and its observers.

Stands in for reactive UI bindings: a presentation layer subscribes once
and re-renders from the events it receives.
"""

import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .session import GenerationState, invoke_callback

logger = logging.getLogger(__name__)


class ChatEventKind(str, Enum):
    STATE = "state"
    DELTA = "delta"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChatEvent(BaseModel):
    """Something observable happened to a chat's generation."""

    model_config = ConfigDict(frozen=True)

    kind: ChatEventKind
    chat_id: str
    message_id: str | None = Field(default=None, description="Assistant message being generated")
    ticket: int | None = Field(default=None, description="Generation ticket")
    state: GenerationState | None = None
    delta: str | None = Field(default=None, description="New fragment (delta events)")
    content: str | None = Field(default=None, description="Accumulated or final text")
    error: str | None = Field(default=None, description="User-facing error line (failed events)")


Listener = Callable[[ChatEvent], Awaitable[None] | None]


class EventBus:
    """Fan-out of ``ChatEvent``s to plain or async listeners.

    Listeners run in subscription order. A failing listener is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish(self, event: ChatEvent) -> None:
        for listener in list(self._listeners):
            try:
                await invoke_callback(listener, event)
            except Exception:
                logger.exception("Event listener failed on %s event", event.kind.value)
