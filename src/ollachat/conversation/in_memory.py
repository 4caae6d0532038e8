"""In-memory conversation store.

Dict-based storage for session-only use and tests.
Data is lost when the application exits.
"""

from ..errors import ChatNotFoundError, MessageNotFoundError
from .base import ConversationStore
from .models import Chat, ChatTranscript, Message
from .ordering import order_messages
from .validation import check_transcripts


class InMemoryConversationStore(ConversationStore):
    """In-memory conversation store.

    Messages are keyed by id; a secondary index maps each chat id to the
    ids of the messages it owns. Callers always receive copies, so a
    returned snapshot never changes under them.
    """

    def __init__(self) -> None:
        super().__init__()
        self._chats: dict[str, Chat] = {}
        self._messages: dict[str, Message] = {}
        self._chat_messages: dict[str, list[str]] = {}

    async def connect(self) -> None:
        """Initialize store (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close store (no-op for in-memory)."""
        pass

    def _chat(self, chat_id: str) -> Chat:
        try:
            return self._chats[chat_id]
        except KeyError:
            raise ChatNotFoundError(chat_id) from None

    def _message(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    async def create_chat(self, model_id: str, title: str | None = None) -> Chat:
        chat = Chat(model_id=model_id) if title is None else Chat(model_id=model_id, title=title)
        self._chats[chat.id] = chat
        self._chat_messages[chat.id] = []
        return chat.model_copy()

    async def get_chat(self, chat_id: str) -> Chat:
        return self._chat(chat_id).model_copy()

    async def list_chats(self) -> list[Chat]:
        chats = sorted(self._chats.values(), key=lambda c: (c.updated_at, c.id), reverse=True)
        return [chat.model_copy() for chat in chats]

    async def rename_chat(self, chat_id: str, title: str) -> Chat:
        chat = self._chat(chat_id)
        chat.title = title
        chat.touch()
        return chat.model_copy()

    async def delete_chat(self, chat_id: str) -> None:
        self._chat(chat_id)
        for message_id in self._chat_messages.pop(chat_id, []):
            self._messages.pop(message_id, None)
        del self._chats[chat_id]
        self._sequence_locks.pop(chat_id, None)

    async def replace_all(self, transcripts: list[ChatTranscript]) -> None:
        check_transcripts(transcripts)
        self._chats = {}
        self._messages = {}
        self._chat_messages = {}
        for transcript in transcripts:
            chat = transcript.chat.model_copy()
            self._chats[chat.id] = chat
            self._chat_messages[chat.id] = []
            for message in transcript.messages:
                self._messages[message.id] = message.model_copy()
                self._chat_messages[chat.id].append(message.id)

    async def get_messages(self, chat_id: str) -> list[Message]:
        self._chat(chat_id)
        messages = (self._messages[mid] for mid in self._chat_messages[chat_id])
        return [message.model_copy() for message in order_messages(messages)]

    async def get_message(self, message_id: str) -> Message:
        return self._message(message_id).model_copy()

    async def _max_sequence(self, chat_id: str) -> int:
        self._chat(chat_id)
        return max(
            (self._messages[mid].sequence for mid in self._chat_messages[chat_id]),
            default=0,
        )

    async def _insert_messages(self, chat_id: str, messages: list[Message]) -> None:
        chat = self._chat(chat_id)
        for message in messages:
            self._messages[message.id] = message.model_copy()
            self._chat_messages[chat_id].append(message.id)
        chat.touch()

    async def _set_content(self, message_id: str, content: str) -> Message:
        message = self._message(message_id)
        if message.content != content:
            message.content = content
            self._chat(message.chat_id).touch()
        return message.model_copy()

    async def rollback(self, message_id: str) -> None:
        message = self._message(message_id)
        del self._messages[message_id]
        ids = self._chat_messages.get(message.chat_id)
        if ids is not None and message_id in ids:
            ids.remove(message_id)
        chat = self._chats.get(message.chat_id)
        if chat is not None:
            chat.touch()

    @property
    def backend_type(self) -> str:
        return "memory"
