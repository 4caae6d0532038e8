"""Chat service: the presentation-facing API.

Ties a conversation store, an inference transport and one generation
session per chat together. Each turn appends the user message and an
assistant placeholder, streams the reply into the placeholder, and then
finalizes it or rolls it back.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from ..config import PENDING_CONTENT
from ..conversation.base import ConversationStore
from ..conversation.models import Message, MessageRole
from ..conversation.ordering import order_messages
from ..errors import EmptyInputError, GenerationFailedError, ImageNotSupportedError
from ..images import supports_images
from ..transport.base import InferenceTransport
from ..transport.models import GenerationRequest, PayloadMessage
from .actor import StoreActor
from .events import ChatEvent, ChatEventKind, EventBus, Listener
from .session import (
    CompleteCallback,
    DeltaCallback,
    GenerationSession,
    GenerationState,
    invoke_callback,
)

logger = logging.getLogger(__name__)


def build_payload(messages: list[Message], exclude: set[str] | None = None) -> list[PayloadMessage]:
    """Convert stored messages into request payload, in display order.

    Assistant placeholders still showing ``PENDING_CONTENT`` and any ids in
    ``exclude`` (messages of generations still in flight) are left out.
    """
    exclude = exclude or set()
    payload = []
    for message in order_messages(messages):
        if message.id in exclude:
            continue
        if message.role == MessageRole.ASSISTANT and message.content == PENDING_CONTENT:
            continue
        payload.append(PayloadMessage(
            role=message.role.value,
            content=message.content,
            images=[message.image_data] if message.image_data else None,
        ))
    return payload


class ChatGeneration:
    """Cancel handle for one chat turn, returned by ``start_generation``."""

    def __init__(self, chat_id: str, user_message: Message, assistant_message: Message):
        self.chat_id = chat_id
        self.user_message = user_message
        self.assistant_message = assistant_message
        self.content = ""
        self.state = GenerationState.IDLE
        self.ticket: int | None = None
        self.rollback: bool | None = None
        self.settled = False
        self.task: asyncio.Task | None = None

    @property
    def message_id(self) -> str:
        """Id of the assistant message this turn writes into."""
        return self.assistant_message.id

    @property
    def received(self) -> bool:
        """Whether any content arrived."""
        return bool(self.content)

    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> str | None:
        """Wait until the turn is settled in the store.

        Returns:
            The final text, or None if the turn was cancelled

        Raises:
            GenerationFailedError: If the generation failed
        """
        await asyncio.wait([self.task])
        if self.task.cancelled():
            return None
        return self.task.result()


class ChatService:
    """Start and cancel generations, and observe them through events.

    Hidden design decisions:
    - All store writes go through a single-writer ``StoreActor``
    - One ``GenerationSession`` per chat; chats generate concurrently
    - Starting a turn on a chat that is still generating cancels the old
      turn first (default cancel policy) and waits for it to settle
    - Cancel policy, ``rollback``: None deletes the placeholder if nothing
      arrived and otherwise keeps the partial text; True always deletes;
      False leaves the placeholder exactly as streamed so far
    - A failure always deletes the placeholder, partial text included;
      the error is surfaced once from ``wait()``
    - Events carry the ticket and message id of the generation that
      produced them, even while a superseded turn is still unwinding

    Usage:
        async with ChatService(store, transport) as service:
            turn = await service.start_generation(chat.id, "Hello")
            text = await turn.wait()
    """

    def __init__(self, store: ConversationStore, transport: InferenceTransport):
        self._store = store
        self._transport = transport
        self._actor = StoreActor(store)
        self._events = EventBus()
        self._sessions: dict[str, GenerationSession] = {}
        self._turns: dict[str, ChatGeneration] = {}
        self._running: dict[asyncio.Task, ChatGeneration] = {}

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def events(self) -> EventBus:
        return self._events

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Receive every ``ChatEvent``; returns an unsubscribe function."""
        return self._events.subscribe(listener)

    async def start(self) -> None:
        self._actor.start()

    async def close(self) -> None:
        """Cancel running turns and stop the store actor."""
        for turn in list(self._running.values()):
            await self.cancel(turn)
        await self._actor.stop()

    async def __aenter__(self) -> "ChatService":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def active_generation(self, chat_id: str) -> ChatGeneration | None:
        """The running turn of a chat, if any."""
        return self._turns.get(chat_id)

    def _session(self, chat_id: str) -> GenerationSession:
        session = self._sessions.get(chat_id)
        if session is None:
            async def on_state(state: GenerationState) -> None:
                # State callbacks run on the generation's own task
                turn = self._running.get(asyncio.current_task())
                if turn is None:
                    return
                if turn.ticket is None:
                    turn.ticket = self._sessions[chat_id].ticket
                turn.state = state
                await self._events.publish(ChatEvent(
                    kind=ChatEventKind.STATE,
                    chat_id=chat_id,
                    message_id=turn.message_id,
                    ticket=turn.ticket,
                    state=state,
                ))

            session = GenerationSession(self._transport, on_state=on_state)
            self._sessions[chat_id] = session
        return session

    async def start_generation(
        self,
        chat_id: str,
        user_text: str,
        image: str | None = None,
        on_delta: DeltaCallback | None = None,
        on_complete: CompleteCallback | None = None,
        options: dict[str, Any] | None = None
    ) -> ChatGeneration:
        """Send a user turn and start streaming the reply.

        Args:
            chat_id: Target chat
            user_text: Text typed by the user
            image: Optional base64 PNG (see ``ollachat.images.encode_image``)
            on_delta: Called with each new fragment, after it is stored
            on_complete: Called with the full text, after it is stored
            options: Sampling options passed to the server

        Returns:
            ChatGeneration handle for cancelling or awaiting the turn

        Raises:
            EmptyInputError: If there is neither text nor an image
            ImageNotSupportedError: If the chat's model takes no images
            ChatNotFoundError: If the chat does not exist
        """
        text = user_text.strip()
        if not text and image is None:
            raise EmptyInputError()

        chat = await self._actor.call(self._store.get_chat, chat_id)
        if image is not None and not supports_images(chat.model_id):
            raise ImageNotSupportedError(chat.model_id)

        previous = self._turns.get(chat_id)
        if previous is not None:
            logger.info("New turn on chat %s cancels the running one", chat_id)
            await self.cancel(previous)

        user, placeholder = await self._actor.call(self._store.append_turn, chat_id, text, image)
        history = await self._actor.call(self._store.get_messages, chat_id)
        request = GenerationRequest(
            model=chat.model_id,
            messages=build_payload(history, exclude={placeholder.id}),
            options=options,
        )

        turn = ChatGeneration(chat_id, user, placeholder)
        self._turns[chat_id] = turn
        turn.task = asyncio.create_task(
            self._drive(turn, request, on_delta, on_complete),
            name=f"chat-{chat_id}"
        )
        self._running[turn.task] = turn
        return turn

    async def _drive(
        self,
        turn: ChatGeneration,
        request: GenerationRequest,
        on_delta: DeltaCallback | None,
        on_complete: CompleteCallback | None
    ) -> str:
        session = self._session(turn.chat_id)
        message_id = turn.message_id

        async def handle_delta(delta: str) -> None:
            turn.content += delta
            await self._actor.call(self._store.apply_delta, message_id, turn.content)
            await self._events.publish(ChatEvent(
                kind=ChatEventKind.DELTA,
                chat_id=turn.chat_id,
                message_id=message_id,
                ticket=turn.ticket,
                delta=delta,
                content=turn.content,
            ))
            await invoke_callback(on_delta, delta)

        async def handle_complete(text: str) -> None:
            turn.content = text
            await self._actor.call(self._store.finalize, message_id, text)
            await self._events.publish(ChatEvent(
                kind=ChatEventKind.COMPLETED,
                chat_id=turn.chat_id,
                message_id=message_id,
                ticket=turn.ticket,
                content=text,
            ))
            await invoke_callback(on_complete, text)

        try:
            return await session.generate(request, on_delta=handle_delta, on_complete=handle_complete)
        except asyncio.CancelledError:
            await self._settle(turn, self._settle_cancelled(turn))
            raise
        except Exception as exc:
            await self._settle(turn, self._settle_failed(turn, exc))
            raise
        finally:
            self._release(turn)

    def _release(self, turn: ChatGeneration) -> None:
        if self._turns.get(turn.chat_id) is turn:
            del self._turns[turn.chat_id]
        if turn.task is not None:
            self._running.pop(turn.task, None)

    async def _settle(self, turn: ChatGeneration, settlement: Coroutine[Any, Any, None]) -> None:
        """Run a turn's settlement to the end, even if its task is cancelled meanwhile."""
        turn.settled = True
        work = asyncio.ensure_future(settlement)
        try:
            await asyncio.shield(work)
        except asyncio.CancelledError:
            await work
            # The turn's outcome is already decided; drop the late cancel request
            asyncio.current_task().uncancel()

    async def _settle_cancelled(self, turn: ChatGeneration) -> None:
        turn.state = GenerationState.CANCELLED
        message_id = turn.message_id
        if turn.rollback is True or (turn.rollback is None and not turn.received):
            await self._actor.call(self._store.rollback, message_id)
        elif turn.rollback is None:
            await self._actor.call(self._store.finalize, message_id, turn.content)
        elif turn.received:
            await self._actor.call(self._store.apply_delta, message_id, turn.content)
        await self._events.publish(ChatEvent(
            kind=ChatEventKind.CANCELLED,
            chat_id=turn.chat_id,
            message_id=message_id,
            ticket=turn.ticket,
            content=turn.content or None,
        ))

    async def _settle_failed(self, turn: ChatGeneration, error: Exception) -> None:
        turn.state = GenerationState.FAILED
        if not isinstance(error, GenerationFailedError):
            logger.error("Chat %s turn aborted by %s", turn.chat_id, type(error).__name__)
        await self._actor.call(self._store.rollback, turn.message_id)
        await self._events.publish(ChatEvent(
            kind=ChatEventKind.FAILED,
            chat_id=turn.chat_id,
            message_id=turn.message_id,
            ticket=turn.ticket,
            error=getattr(error, "user_message", str(error)),
        ))

    async def cancel(self, turn: ChatGeneration, *, rollback: bool | None = None) -> None:
        """Cancel a turn and wait until its placeholder is settled.

        A turn that has already failed, completed or started settling is
        only waited for; its outcome stands.

        Args:
            turn: Handle from ``start_generation``
            rollback: None deletes the placeholder only if nothing arrived,
                True always deletes it, False leaves it as streamed so far
        """
        if turn.task is None or turn.task.done():
            return
        if turn.settled or turn.state.is_terminal:
            await asyncio.wait([turn.task])
            return
        turn.rollback = rollback
        session = self._sessions.get(turn.chat_id)
        if session is not None and session.active_task is turn.task:
            session.cancel()
        else:
            turn.task.cancel()
        await asyncio.wait([turn.task])
        if not turn.settled:
            # Cancelled before the task ever ran
            self._release(turn)
            turn.settled = True
            await asyncio.shield(self._settle_cancelled(turn))
