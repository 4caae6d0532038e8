"""Data models for the conversation store.

These models define chats and messages independent of the storage
backend used.
"""

import base64
import binascii
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from uuid_extensions import uuid7

from ..config import DEFAULT_CHAT_TITLE, MAX_IMAGE_BYTES


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Time-ordered unique identifier (UUIDv7)."""
    return str(uuid7())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MessageRole(str, Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Chat(BaseModel):
    """A conversation with one model.

    The chat owns its messages; the store deletes them with the chat.
    ``updated_at`` never moves backwards.
    """

    id: str = Field(default_factory=new_id)
    title: str = Field(default=DEFAULT_CHAT_TITLE)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    model_id: str = Field(description="Model used for generations in this chat")

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store every timestamp as aware UTC."""
        return _as_utc(v)

    def touch(self, at: datetime | None = None) -> None:
        """Bump ``updated_at``, keeping it monotonically non-decreasing."""
        at = _as_utc(at) if at is not None else utc_now()
        if at > self.updated_at:
            self.updated_at = at


class Message(BaseModel):
    """A single chat message.

    Within a chat, ``sequence`` is unique and strictly increasing in
    creation order.
    """

    id: str = Field(default_factory=new_id)
    chat_id: str = Field(description="Owning chat")
    role: MessageRole
    content: str = Field(default="", description="Text; mutable while streaming")
    image_data: str | None = Field(default=None, description="Base64-encoded attached image")
    timestamp: datetime = Field(default_factory=utc_now)
    sequence: int = Field(default=0, ge=0, description="Position within the chat")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("image_data")
    @classmethod
    def validate_image_data(cls, v: str | None) -> str | None:
        """Require valid base64 within the size bound."""
        if v is None:
            return v
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("image_data must be base64") from exc
        if len(raw) > MAX_IMAGE_BYTES:
            raise ValueError(f"image_data exceeds {MAX_IMAGE_BYTES} bytes")
        return v


class ChatTranscript(BaseModel):
    """A chat together with its messages, as used for wholesale replacement."""

    chat: Chat
    messages: list[Message] = Field(default_factory=list)
