"""Display ordering for chat messages.

Sequence numbers alone are not trusted to be distinct (imported or
corrupted data may repeat them), so timestamp and then id break ties.
The result is a total order, so rendering and export are deterministic.
"""

from collections.abc import Iterable
from datetime import datetime

from .models import Message


def message_sort_key(message: Message) -> tuple[int, datetime, str]:
    """Sort key: sequence, then timestamp, then id."""
    return (message.sequence, message.timestamp, message.id)


def order_messages(messages: Iterable[Message]) -> list[Message]:
    """Return a new list of ``messages`` in display order.

    Pure function: the input is neither reordered nor modified.
    """
    return sorted(messages, key=message_sort_key)
