"""Conversation store module for ollachat.

Durable, ordered per-chat message logs with race-free sequence allocation.
"""

from .backup import BackupDocument, ChatBackup, export_backup, import_backup, read_backup, write_backup
from .base import ConversationStore
from .factory import create_conversation_store
from .models import Chat, ChatTranscript, Message, MessageRole
from .ordering import message_sort_key, order_messages

__all__ = [
    "BackupDocument",
    "Chat",
    "ChatBackup",
    "ChatTranscript",
    "ConversationStore",
    "Message",
    "MessageRole",
    "create_conversation_store",
    "export_backup",
    "import_backup",
    "message_sort_key",
    "order_messages",
    "read_backup",
    "write_backup",
]
