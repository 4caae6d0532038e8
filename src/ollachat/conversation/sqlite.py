"""SQLite conversation store.

Provides persistent chat storage using a SQLite database file.
Uses aiosqlite for async access.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from ..errors import ChatNotFoundError, MessageNotFoundError
from .base import ConversationStore
from .models import Chat, ChatTranscript, Message, MessageRole, utc_now
from .validation import check_transcripts

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = "id, chat_id, role, content, image_data, timestamp, sequence"
_CHAT_COLUMNS = "id, title, model_id, created_at, updated_at"


def _ts(value: datetime) -> str:
    """Fixed-width UTC ISO string, so text comparison matches time order."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_chat(row: tuple) -> Chat:
    chat_id, title, model_id, created_at, updated_at = row
    return Chat(
        id=chat_id,
        title=title,
        model_id=model_id,
        created_at=datetime.fromisoformat(created_at),
        updated_at=datetime.fromisoformat(updated_at),
    )


def _row_to_message(row: tuple) -> Message:
    message_id, chat_id, role, content, image_data, ts, sequence = row
    return Message(
        id=message_id,
        chat_id=chat_id,
        role=MessageRole(role),
        content=content,
        image_data=image_data,
        timestamp=datetime.fromisoformat(ts),
        sequence=sequence,
    )


class SQLiteConversationStore(ConversationStore):
    """SQLite-backed conversation store.

    Chats and messages live in two tables; ``messages(chat_id, sequence)``
    is both the chat -> messages index and a uniqueness guard. Deleting a
    chat deletes its messages explicitly before the chat row.
    """

    def __init__(self, path: str | Path = "./ollachat.db"):
        super().__init__()
        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("SQLiteConversationStore is not connected; call connect() first")
        return self._connection

    async def connect(self) -> None:
        """Open the database and create the schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()
        logger.debug("Conversation store opened at %s", self._db_path)

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                model_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL REFERENCES chats(id),
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                image_data TEXT,
                timestamp TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                UNIQUE (chat_id, sequence)
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chats_updated
            ON chats(updated_at)
        """)

        await self._conn.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _touch(self, chat_id: str) -> None:
        # MAX keeps updated_at non-decreasing even if the clock steps back
        await self._conn.execute(
            "UPDATE chats SET updated_at = MAX(updated_at, ?) WHERE id = ?",
            (_ts(utc_now()), chat_id)
        )

    async def create_chat(self, model_id: str, title: str | None = None) -> Chat:
        chat = Chat(model_id=model_id) if title is None else Chat(model_id=model_id, title=title)
        await self._conn.execute(
            f"INSERT INTO chats ({_CHAT_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
            (chat.id, chat.title, chat.model_id, _ts(chat.created_at), _ts(chat.updated_at))
        )
        await self._conn.commit()
        return chat

    async def get_chat(self, chat_id: str) -> Chat:
        async with self._conn.execute(
            f"SELECT {_CHAT_COLUMNS} FROM chats WHERE id = ?",
            (chat_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ChatNotFoundError(chat_id)
        return _row_to_chat(row)

    async def list_chats(self) -> list[Chat]:
        async with self._conn.execute(
            f"SELECT {_CHAT_COLUMNS} FROM chats ORDER BY updated_at DESC, id DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_chat(row) for row in rows]

    async def rename_chat(self, chat_id: str, title: str) -> Chat:
        cursor = await self._conn.execute(
            "UPDATE chats SET title = ? WHERE id = ?",
            (title, chat_id)
        )
        if cursor.rowcount == 0:
            await self._conn.rollback()
            raise ChatNotFoundError(chat_id)
        await self._touch(chat_id)
        await self._conn.commit()
        return await self.get_chat(chat_id)

    async def delete_chat(self, chat_id: str) -> None:
        await self.get_chat(chat_id)
        await self._conn.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
        await self._conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        await self._conn.commit()
        self._sequence_locks.pop(chat_id, None)

    async def replace_all(self, transcripts: list[ChatTranscript]) -> None:
        check_transcripts(transcripts)
        try:
            await self._conn.execute("DELETE FROM messages")
            await self._conn.execute("DELETE FROM chats")
            for transcript in transcripts:
                chat = transcript.chat
                await self._conn.execute(
                    f"INSERT INTO chats ({_CHAT_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (chat.id, chat.title, chat.model_id, _ts(chat.created_at), _ts(chat.updated_at))
                )
                await self._insert_rows(transcript.messages)
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        logger.info("Replaced conversation store contents with %d chats", len(transcripts))

    async def get_messages(self, chat_id: str) -> list[Message]:
        await self.get_chat(chat_id)
        async with self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE chat_id = ?
            ORDER BY sequence ASC, timestamp ASC, id ASC
            """,
            (chat_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_message(self, message_id: str) -> Message:
        async with self._conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",
            (message_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise MessageNotFoundError(message_id)
        return _row_to_message(row)

    async def _max_sequence(self, chat_id: str) -> int:
        await self.get_chat(chat_id)
        async with self._conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) FROM messages WHERE chat_id = ?",
            (chat_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def _insert_rows(self, messages: list[Message]) -> None:
        await self._conn.executemany(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    m.id,
                    m.chat_id,
                    m.role.value,
                    m.content,
                    m.image_data,
                    _ts(m.timestamp),
                    m.sequence,
                )
                for m in messages
            ]
        )

    async def _insert_messages(self, chat_id: str, messages: list[Message]) -> None:
        try:
            await self._insert_rows(messages)
            await self._touch(chat_id)
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def _set_content(self, message_id: str, content: str) -> Message:
        message = await self.get_message(message_id)
        if message.content == content:
            return message
        await self._conn.execute(
            "UPDATE messages SET content = ? WHERE id = ?",
            (content, message_id)
        )
        await self._touch(message.chat_id)
        await self._conn.commit()
        message.content = content
        return message

    async def rollback(self, message_id: str) -> None:
        message = await self.get_message(message_id)
        await self._conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        await self._touch(message.chat_id)
        await self._conn.commit()

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
