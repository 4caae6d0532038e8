"""NDJSON stream decoding.

Turns the raw lines of a ``POST /chat`` response into ``StreamEvent``s.
Each line is decoded on its own. Lines that are blank, not JSON, not a JSON
object, or that carry neither content nor a terminal marker are skipped:
a dropped fragment degrades the text instead of failing the generation.
"""

import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from pydantic import ValidationError

from .models import ChatChunk, StreamEvent

logger = logging.getLogger(__name__)

# Longest prefix of a rejected line echoed into the debug log
_LOG_PREVIEW = 80


def decode_line(line: str) -> StreamEvent | None:
    """Decode a single line.

    Args:
        line: One line of the response body (without the newline)

    Returns:
        The event, or None when the line is unusable and must be skipped
    """
    text = line.strip()
    if not text:
        return None

    try:
        chunk = ChatChunk.model_validate_json(text)
    except ValidationError:
        logger.debug("Skipping undecodable stream line: %r", text[:_LOG_PREVIEW])
        return None

    if chunk.error:
        # The server closes the stream after an error report, so the missing
        # terminal marker is what fails the generation
        logger.warning("Server reported a stream error: %s", chunk.error)
        return None

    content = chunk.message.content if chunk.message else None
    done = bool(chunk.done)
    if content is None and not done:
        logger.debug("Skipping stream line without content: %r", text[:_LOG_PREVIEW])
        return None

    return StreamEvent(
        delta=content or None,
        role=chunk.message.role if chunk.message else None,
        done=done,
        done_reason=chunk.done_reason,
        usage=chunk.usage() if done else None,
    )


async def decode_stream(
    lines: AsyncIterable[str],
    *,
    is_cancelled: Callable[[], bool] | None = None
) -> AsyncIterator[StreamEvent]:
    """Decode a line stream into events.

    The sequence ends after the first event whose ``done`` is true, when
    ``lines`` is exhausted (connection closed), or when ``is_cancelled``
    returns true; the flag is checked before each line. Single pass.

    Args:
        lines: Lazily produced response lines
        is_cancelled: Optional cooperative cancellation flag

    Yields:
        StreamEvent for every usable line

    Raises:
        TransportError: Propagated from ``lines`` on connection failures
    """
    async for line in lines:
        if is_cancelled is not None and is_cancelled():
            logger.debug("Stream decoding stopped by cancellation")
            return
        event = decode_line(line)
        if event is None:
            continue
        yield event
        if event.done:
            return
