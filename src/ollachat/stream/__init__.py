"""Streaming response decoding for ollachat."""

from .decoder import decode_line, decode_stream
from .models import ChatChunk, StreamEvent

__all__ = [
    "ChatChunk",
    "StreamEvent",
    "decode_line",
    "decode_stream",
]
