"""Generation session: one request/response cycle at a time.

A session opens the chat stream, feeds it through the decoder, and hands
each content fragment to the caller in server order. It knows nothing
about storage; reconciling text into the conversation store is the
caller's job (see ``ChatService``).
"""

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ..errors import DecodingFailedError, GenerationFailedError, TransportError
from ..stream import decode_stream
from ..transport.base import InferenceTransport
from ..transport.models import GenerationRequest

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Awaitable[None] | None]
CompleteCallback = Callable[[str], Awaitable[None] | None]
StateCallback = Callable[["GenerationState"], Awaitable[None] | None]

_tickets = itertools.count(1)


class GenerationState(str, Enum):
    """Lifecycle of a generation."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationState.COMPLETED, GenerationState.CANCELLED, GenerationState.FAILED)


async def invoke_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call a plain or coroutine callback, awaiting it if needed."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class GenerationHandle:
    """Handle to a generation started with :meth:`GenerationSession.start`."""

    def __init__(self, session: "GenerationSession", ticket: int, task: asyncio.Task):
        self._session = session
        self.ticket = ticket
        self.task = task

    @property
    def state(self) -> GenerationState:
        """Current state of this generation."""
        if self.task.done():
            if self.task.cancelled():
                return GenerationState.CANCELLED
            if self.task.exception() is not None:
                return GenerationState.FAILED
            return GenerationState.COMPLETED
        if self._session.ticket == self.ticket:
            return self._session.state
        return GenerationState.IDLE

    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> bool:
        """Request cancellation. Returns False if already finished."""
        if self.task.done():
            return False
        if self._session.ticket == self.ticket:
            self._session.cancel()
        else:
            self.task.cancel()
        return True

    async def wait(self) -> str | None:
        """Wait for the generation to settle.

        Returns:
            The full text, or None if the generation was cancelled

        Raises:
            GenerationFailedError: If the generation failed
        """
        await asyncio.wait([self.task])
        if self.task.cancelled():
            return None
        return self.task.result()


class GenerationSession:
    """Runs generations against an inference transport.

    At most one generation is active per session. Starting a new one
    cancels the active one and waits for it to settle first (last writer
    wins, nothing is queued).

    Hidden design decisions:
    - Cancellation is cooperative: a flag the decoder checks between lines,
      plus task cancellation, which closes the HTTP response
    - Callbacks (plain or async) are awaited in order, so delta delivery
      order equals server order and completion follows the last delta
    - A stream that ends without its terminal marker counts as a failure
    """

    def __init__(
        self,
        transport: InferenceTransport,
        *,
        on_state: StateCallback | None = None
    ):
        self._transport = transport
        self._on_state = on_state
        self._state = GenerationState.IDLE
        self._accumulated = ""
        self._ticket = 0
        self._active: asyncio.Task | None = None
        self._cancel_event: asyncio.Event | None = None

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def accumulated(self) -> str:
        """Text received so far in the current generation."""
        return self._accumulated

    @property
    def ticket(self) -> int:
        """Ticket of the most recently started generation (0 if none)."""
        return self._ticket

    @property
    def active_task(self) -> asyncio.Task | None:
        """Task running the current generation, if any."""
        if self._active is not None and not self._active.done():
            return self._active
        return None

    async def _set_state(self, state: GenerationState) -> None:
        self._state = state
        await invoke_callback(self._on_state, state)

    async def _preempt(self) -> None:
        current = asyncio.current_task()
        # Loop: another caller may have become active while we waited
        while self._active is not None and self._active is not current and not self._active.done():
            previous = self._active
            logger.debug("Cancelling generation #%d for a newer one", self._ticket)
            self.cancel()
            await asyncio.wait([previous])

    async def generate(
        self,
        request: GenerationRequest,
        on_delta: DeltaCallback | None = None,
        on_complete: CompleteCallback | None = None
    ) -> str:
        """Run one generation in the calling task.

        Args:
            request: Chat request to send
            on_delta: Called with each non-empty content fragment
            on_complete: Called once with the full text after the terminal event

        Returns:
            The full generated text

        Raises:
            GenerationFailedError: On a transport or decoding failure
            asyncio.CancelledError: If the generation was cancelled
        """
        return await self._generate(next(_tickets), request, on_delta, on_complete)

    def start(
        self,
        request: GenerationRequest,
        on_delta: DeltaCallback | None = None,
        on_complete: CompleteCallback | None = None
    ) -> GenerationHandle:
        """Run :meth:`generate` in a new task and return its handle."""
        ticket = next(_tickets)
        task = asyncio.create_task(
            self._generate(ticket, request, on_delta, on_complete),
            name=f"generation-{ticket}"
        )
        return GenerationHandle(self, ticket, task)

    async def _generate(
        self,
        ticket: int,
        request: GenerationRequest,
        on_delta: DeltaCallback | None,
        on_complete: CompleteCallback | None
    ) -> str:
        await self._preempt()
        task = asyncio.current_task()
        cancelled = asyncio.Event()
        self._active = task
        self._ticket = ticket
        self._cancel_event = cancelled
        self._accumulated = ""
        try:
            return await self._run(request, cancelled, on_delta, on_complete)
        finally:
            if self._active is task:
                self._active = None
                self._cancel_event = None

    async def _run(
        self,
        request: GenerationRequest,
        cancelled: asyncio.Event,
        on_delta: DeltaCallback | None,
        on_complete: CompleteCallback | None
    ) -> str:
        finished = False
        try:
            await self._set_state(GenerationState.SENDING)
            async with self._transport.open_chat_stream(request) as lines:
                await self._set_state(GenerationState.STREAMING)
                async for event in decode_stream(lines, is_cancelled=cancelled.is_set):
                    if event.delta:
                        self._accumulated += event.delta
                        await invoke_callback(on_delta, event.delta)
                    if event.done:
                        finished = True
            if cancelled.is_set():
                # Cancelled from inside a callback of this very task
                raise asyncio.CancelledError()
            if not finished:
                raise DecodingFailedError("Stream ended before completion")
            await invoke_callback(on_complete, self._accumulated)
        except asyncio.CancelledError:
            self._accumulated = ""
            await self._set_state(GenerationState.CANCELLED)
            logger.info("Generation #%d cancelled", self._ticket)
            raise
        except TransportError as exc:
            logger.warning("Generation #%d failed: %s", self._ticket, exc.user_message)
            await self._set_state(GenerationState.FAILED)
            raise GenerationFailedError(exc) from exc
        except Exception:
            await self._set_state(GenerationState.FAILED)
            raise

        await self._set_state(GenerationState.COMPLETED)
        return self._accumulated

    def cancel(self) -> None:
        """Cancel the active generation, if any. Never blocks."""
        if self._cancel_event is not None:
            self._cancel_event.set()
        task = self._active
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def cancel_and_wait(self) -> None:
        """Cancel the active generation and wait for it to settle."""
        task = self._active
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait([task])
