"""Abstract base class for conversation stores.

This module defines the interface for durable chat and message storage.
The abstraction hides:
- Storage format and persistence mechanism (in-memory, SQLite)
- How the chat -> messages relation is indexed
- How sequence numbers are allocated without races
"""

import asyncio
from abc import ABC, abstractmethod

from ..config import PENDING_CONTENT
from .models import Chat, ChatTranscript, Message, MessageRole


class ConversationStore(ABC):
    """Abstract conversation store.

    Sequence numbers are allocated under a per-chat ``asyncio.Lock``, so
    concurrent turn starts on one chat never collide while unrelated
    chats never contend. Everything else assumes a single writer (see
    ``ollachat.generation.actor.StoreActor``).
    """

    def __init__(self) -> None:
        self._sequence_locks: dict[str, asyncio.Lock] = {}

    def _sequence_lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._sequence_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._sequence_locks[chat_id] = lock
        return lock

    async def _allocate_sequences(self, chat_id: str, count: int) -> list[int]:
        """Reserve ``count`` consecutive sequence numbers.

        Each allocation is ``max(existing, default 0) + 1`` with the
        previous reservations counted. Caller must hold the chat's lock.
        """
        current = await self._max_sequence(chat_id)
        allocated = []
        for _ in range(count):
            current += 1
            allocated.append(current)
        return allocated

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the store."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store gracefully."""

    @abstractmethod
    async def create_chat(self, model_id: str, title: str | None = None) -> Chat:
        """Create an empty chat bound to ``model_id``."""

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Chat:
        """Fetch a chat.

        Raises:
            ChatNotFoundError: If the chat does not exist
        """

    @abstractmethod
    async def list_chats(self) -> list[Chat]:
        """All chats, most recently updated first."""

    @abstractmethod
    async def rename_chat(self, chat_id: str, title: str) -> Chat:
        """Change a chat's title and bump ``updated_at``."""

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        """Delete a chat and, explicitly, every message it owns."""

    @abstractmethod
    async def replace_all(self, transcripts: list[ChatTranscript]) -> None:
        """Replace all chats and messages with ``transcripts`` in one step.

        Raises:
            ValueError: If a message belongs to another chat, or sequence
                numbers repeat within a chat
        """

    @abstractmethod
    async def get_messages(self, chat_id: str) -> list[Message]:
        """Snapshot of a chat's messages in display order."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Message:
        """Fetch one message.

        Raises:
            MessageNotFoundError: If the message does not exist
        """

    @abstractmethod
    async def _max_sequence(self, chat_id: str) -> int:
        """Highest sequence number in the chat, or 0.

        Raises:
            ChatNotFoundError: If the chat does not exist
        """

    @abstractmethod
    async def _insert_messages(self, chat_id: str, messages: list[Message]) -> None:
        """Insert ``messages`` atomically and bump the chat's ``updated_at``."""

    @abstractmethod
    async def _set_content(self, message_id: str, content: str) -> Message:
        """Replace a message's content, bumping its chat when it changes.

        Raises:
            MessageNotFoundError: If the message does not exist
        """

    @abstractmethod
    async def rollback(self, message_id: str) -> None:
        """Remove a message and detach it from its chat.

        Used to drop an assistant placeholder when generation fails.

        Raises:
            MessageNotFoundError: If the message does not exist
        """

    async def append_turn(
        self,
        chat_id: str,
        user_content: str,
        image: str | None = None
    ) -> tuple[Message, Message]:
        """Append a user message and its assistant placeholder.

        Both sequence numbers are taken under the chat's lock (user first,
        then assistant, so they are adjacent) and both messages land in a
        single atomic insert.

        Args:
            chat_id: Target chat
            user_content: Text typed by the user
            image: Optional base64 image attached to the user message

        Returns:
            (user_message, assistant_placeholder)
        """
        async with self._sequence_lock(chat_id):
            user_seq, assistant_seq = await self._allocate_sequences(chat_id, 2)
            user = Message(
                chat_id=chat_id,
                role=MessageRole.USER,
                content=user_content,
                image_data=image,
                sequence=user_seq,
            )
            placeholder = Message(
                chat_id=chat_id,
                role=MessageRole.ASSISTANT,
                content=PENDING_CONTENT,
                sequence=assistant_seq,
            )
            await self._insert_messages(chat_id, [user, placeholder])
        return user.model_copy(), placeholder.model_copy()

    async def append_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        image: str | None = None
    ) -> Message:
        """Append a single message (e.g. a system prompt) with a fresh sequence."""
        async with self._sequence_lock(chat_id):
            (sequence,) = await self._allocate_sequences(chat_id, 1)
            message = Message(
                chat_id=chat_id,
                role=role,
                content=content,
                image_data=image,
                sequence=sequence,
            )
            await self._insert_messages(chat_id, [message])
        return message.model_copy()

    async def apply_delta(self, message_id: str, content: str) -> Message:
        """Replace the message's content with the accumulated text so far.

        Idempotent: applying the same accumulated text twice changes nothing.
        """
        return await self._set_content(message_id, content)

    async def finalize(self, message_id: str, content: str) -> Message:
        """Set the complete text of a finished generation and persist it."""
        return await self._set_content(message_id, content)

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""
