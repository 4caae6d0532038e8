"""Single-writer access to a conversation store.

Streaming callbacks fire on generation tasks; routing every store write
through one queue-consuming task keeps writes serialized in the order
they were posted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..conversation.base import ConversationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STOP = object()


class StoreActor:
    """Runs store operations one at a time on a dedicated task.

    Usage:
        async with StoreActor(store) as actor:
            chat = await actor.call(store.create_chat, "llama3.2")
    """

    def __init__(self, store: ConversationStore):
        self._store = store
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the writer task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="store-actor")

    async def stop(self) -> None:
        """Drain queued operations, then stop the writer task."""
        if not self.running:
            return
        await self._queue.put(_STOP)
        await self._task
        self._task = None

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Queue ``fn(*args, **kwargs)`` and wait for its result.

        Raises:
            RuntimeError: If the actor is not running
            Exception: Whatever the operation raised
        """
        if not self.running:
            raise RuntimeError("StoreActor is not running; call start() first")
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((fn, args, kwargs, future))
        return await future

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            fn, args, kwargs, future = item
            if future.cancelled():
                # Caller gave up before the operation started
                continue
            try:
                result = await fn(*args, **kwargs)
            except Exception as exc:
                if future.done():
                    logger.exception("Store operation %s failed", getattr(fn, "__name__", fn))
                else:
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def __aenter__(self) -> "StoreActor":
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
