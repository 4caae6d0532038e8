"""JSON backup of every chat and its messages.

A backup document is ``{"version": 1, "chats": [...], "timestamp": ...}``
where each chat carries its messages in display order. Importing replaces
the store contents wholesale.
"""

import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from ..config import BACKUP_VERSION
from .base import ConversationStore
from .models import Chat, ChatTranscript, Message, utc_now

logger = logging.getLogger(__name__)


class ChatBackup(Chat):
    """A chat with its messages embedded."""

    messages: list[Message] = Field(default_factory=list)

    def to_transcript(self) -> ChatTranscript:
        chat = Chat.model_validate(self.model_dump(exclude={"messages"}))
        return ChatTranscript(chat=chat, messages=list(self.messages))


class BackupDocument(BaseModel):
    """Top-level backup file contents."""

    version: int = Field(default=BACKUP_VERSION, ge=1)
    chats: list[ChatBackup] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


async def export_backup(store: ConversationStore) -> BackupDocument:
    """Snapshot every chat in the store."""
    chats = []
    for chat in await store.list_chats():
        messages = await store.get_messages(chat.id)
        chats.append(ChatBackup(**chat.model_dump(), messages=messages))
    logger.info("Exported %d chats", len(chats))
    return BackupDocument(chats=chats)


async def import_backup(store: ConversationStore, document: BackupDocument) -> int:
    """Replace all chats in ``store`` with the document's contents.

    Returns:
        Number of chats imported

    Raises:
        ValueError: If the document version is newer than this client
            understands, or its messages are inconsistent
    """
    if document.version > BACKUP_VERSION:
        raise ValueError(
            f"Unsupported backup version: {document.version}. "
            f"Newest supported version: {BACKUP_VERSION}"
        )
    await store.replace_all([chat.to_transcript() for chat in document.chats])
    return len(document.chats)


def write_backup(document: BackupDocument, path: str | Path) -> Path:
    """Write ``document`` as pretty-printed JSON."""
    path = Path(path)
    path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
    return path


def read_backup(path: str | Path) -> BackupDocument:
    """Load a backup document.

    Raises:
        pydantic.ValidationError: If the file is not a valid backup
    """
    return BackupDocument.model_validate_json(Path(path).read_text(encoding="utf-8"))
