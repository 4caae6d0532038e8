"""Unit tests for the generation session."""
import asyncio

import pytest

from ollachat.errors import (
    DecodingFailedError,
    GenerationFailedError,
    RequestTimeoutError,
    ServerError,
)
from ollachat.generation import GenerationSession, GenerationState
from ollachat.transport import GenerationRequest, PayloadMessage


def chat_request(text="Hi"):
    return GenerationRequest(model="llama3.2", messages=[PayloadMessage(role="user", content=text)])


class Recorder:
    """Collects callback invocations."""

    def __init__(self):
        self.deltas = []
        self.completions = []
        self.states = []

    def on_delta(self, delta):
        self.deltas.append(delta)

    def on_complete(self, text):
        self.completions.append(text)

    def on_state(self, state):
        self.states.append(state)


class TestGenerate:
    """Tests for a full generation cycle."""

    @pytest.mark.asyncio
    async def test_deltas_then_completion(self, scripted_transport, stream_lines):
        """Test Hel + lo is delivered in order and completes with Hello."""
        transport = scripted_transport(stream_lines("Hel", "lo"))
        rec = Recorder()
        session = GenerationSession(transport, on_state=rec.on_state)

        text = await session.generate(chat_request(), on_delta=rec.on_delta, on_complete=rec.on_complete)

        assert text == "Hello"
        assert rec.deltas == ["Hel", "lo"]
        assert rec.completions == ["Hello"]
        assert rec.states == [GenerationState.SENDING, GenerationState.STREAMING, GenerationState.COMPLETED]
        assert session.state == GenerationState.COMPLETED
        assert transport.closed_streams == 1

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited_in_order(self, scripted_transport, stream_lines):
        transport = scripted_transport(stream_lines("a", "b", "c"))
        events = []

        async def on_delta(delta):
            await asyncio.sleep(0)
            events.append(("delta", delta))

        async def on_complete(text):
            events.append(("complete", text))

        await GenerationSession(transport).generate(chat_request(), on_delta=on_delta, on_complete=on_complete)

        assert events == [("delta", "a"), ("delta", "b"), ("delta", "c"), ("complete", "abc")]

    @pytest.mark.asyncio
    async def test_malformed_lines_do_not_fail(self, scripted_transport):
        transport = scripted_transport([
            '{"message":{"content":"A"}}',
            "not-json",
            '{"message":{"content":"B"}}',
            '{"done":true}',
        ])
        rec = Recorder()

        text = await GenerationSession(transport).generate(
            chat_request(), on_delta=rec.on_delta, on_complete=rec.on_complete
        )

        assert text == "AB"
        assert rec.deltas == ["A", "B"]
        assert rec.completions == ["AB"]

    @pytest.mark.asyncio
    async def test_request_is_forwarded(self, scripted_transport, stream_lines):
        transport = scripted_transport(stream_lines("x"))
        request = chat_request("What is 2+2?")

        await GenerationSession(transport).generate(request)

        assert transport.requests == [request]


class TestFailure:
    """Tests for failed generations."""

    @pytest.mark.asyncio
    async def test_server_error_fails_generation(self, scripted_transport):
        transport = scripted_transport(open_error=ServerError(500, "boom"))
        rec = Recorder()
        session = GenerationSession(transport, on_state=rec.on_state)

        with pytest.raises(GenerationFailedError) as exc_info:
            await session.generate(chat_request(), on_complete=rec.on_complete)

        assert isinstance(exc_info.value.cause, ServerError)
        assert exc_info.value.cause.status == 500
        assert rec.completions == []
        assert session.state == GenerationState.FAILED
        assert rec.states[-1] == GenerationState.FAILED

    @pytest.mark.asyncio
    async def test_mid_stream_error_fails_generation(self, scripted_transport, stream_lines):
        transport = scripted_transport(stream_lines("par", done=False), stream_error=RequestTimeoutError())
        rec = Recorder()
        session = GenerationSession(transport)

        with pytest.raises(GenerationFailedError) as exc_info:
            await session.generate(chat_request(), on_delta=rec.on_delta, on_complete=rec.on_complete)

        assert isinstance(exc_info.value.cause, RequestTimeoutError)
        assert rec.deltas == ["par"]
        assert rec.completions == []

    @pytest.mark.asyncio
    async def test_stream_closed_before_done_fails(self, scripted_transport, stream_lines):
        """Test that a stream ending without its terminal marker is a failure."""
        transport = scripted_transport(stream_lines("trunc", done=False))
        session = GenerationSession(transport)

        with pytest.raises(GenerationFailedError) as exc_info:
            await session.generate(chat_request())

        assert isinstance(exc_info.value.cause, DecodingFailedError)
        assert session.state == GenerationState.FAILED

    @pytest.mark.asyncio
    async def test_server_error_line_fails_generation(self, scripted_transport, stream_lines):
        """Test that an in-stream error report still ends the generation as failed."""
        lines = stream_lines("par", done=False) + ['{"error":"out of memory"}']
        rec = Recorder()
        session = GenerationSession(scripted_transport(lines))

        with pytest.raises(GenerationFailedError) as exc_info:
            await session.generate(chat_request(), on_delta=rec.on_delta, on_complete=rec.on_complete)

        assert isinstance(exc_info.value.cause, DecodingFailedError)
        assert rec.deltas == ["par"]
        assert rec.completions == []

    @pytest.mark.asyncio
    async def test_failure_user_message_names_cause(self, scripted_transport):
        transport = scripted_transport(open_error=ServerError(500))

        with pytest.raises(GenerationFailedError) as exc_info:
            await GenerationSession(transport).generate(chat_request())

        assert "HTTP 500" in exc_info.value.user_message


class TestCancellation:
    """Tests for cancelling generations."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_delta(self, scripted_transport, stream_lines):
        """Test that cancelling mid-stream skips completion and ends cancelled."""
        transport = scripted_transport(stream_lines("Hel", "lo"), pause_after=1)
        rec = Recorder()
        session = GenerationSession(transport, on_state=rec.on_state)

        handle = session.start(chat_request(), on_delta=rec.on_delta, on_complete=rec.on_complete)
        await transport.paused.wait()
        assert handle.state == GenerationState.STREAMING

        assert handle.cancel()
        result = await handle.wait()

        assert result is None
        assert handle.state == GenerationState.CANCELLED
        assert session.state == GenerationState.CANCELLED
        assert rec.deltas == ["Hel"]
        assert rec.completions == []
        assert session.accumulated == ""
        assert transport.closed_streams == 1

    @pytest.mark.asyncio
    async def test_cancel_and_wait(self, scripted_transport, stream_lines):
        transport = scripted_transport(stream_lines("a", "b"), pause_after=0)
        session = GenerationSession(transport)

        handle = session.start(chat_request())
        await transport.paused.wait()
        await session.cancel_and_wait()

        assert handle.done()
        assert handle.state == GenerationState.CANCELLED
        assert session.active_task is None

    @pytest.mark.asyncio
    async def test_cancel_from_delta_callback(self, scripted_transport, stream_lines):
        """Test that cancelling inside a callback stops before the next line."""
        transport = scripted_transport(stream_lines("a", "b", "c"))
        rec = Recorder()
        session = GenerationSession(transport)

        def on_delta(delta):
            rec.on_delta(delta)
            session.cancel()

        handle = session.start(chat_request(), on_delta=on_delta, on_complete=rec.on_complete)

        assert await handle.wait() is None
        assert handle.state == GenerationState.CANCELLED
        assert rec.deltas == ["a"]
        assert rec.completions == []

    @pytest.mark.asyncio
    async def test_cancel_finished_handle_is_noop(self, scripted_transport, stream_lines):
        session = GenerationSession(scripted_transport(stream_lines("x")))
        handle = session.start(chat_request())

        assert await handle.wait() == "x"
        assert not handle.cancel()
        assert handle.state == GenerationState.COMPLETED

    @pytest.mark.asyncio
    async def test_new_generation_preempts_active_one(self, scripted_transport, stream_lines):
        """Test last-writer-wins: a second start cancels the first."""
        transport = scripted_transport(stream_lines("old", "er"), pause_after=1)
        first_rec, second_rec = Recorder(), Recorder()
        session = GenerationSession(transport)

        first = session.start(chat_request("one"), on_complete=first_rec.on_complete)
        await transport.paused.wait()
        transport.pause_after = None

        second = session.start(chat_request("two"), on_complete=second_rec.on_complete)
        text = await second.wait()

        assert first.state == GenerationState.CANCELLED
        assert first_rec.completions == []
        assert text == "older"
        assert second_rec.completions == ["older"]
        assert second.ticket > first.ticket
        assert session.ticket == second.ticket

    @pytest.mark.asyncio
    async def test_handle_reports_failure(self, scripted_transport):
        session = GenerationSession(scripted_transport(open_error=ServerError(503)))
        handle = session.start(chat_request())

        with pytest.raises(GenerationFailedError):
            await handle.wait()
        assert handle.state == GenerationState.FAILED
