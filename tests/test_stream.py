"""Unit tests for the stream decoding module."""
import asyncio
import json
import logging

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ollachat.stream import StreamEvent, decode_line, decode_stream


async def lines_of(items):
    for item in items:
        yield item


async def collect(lines, **kwargs):
    return [event async for event in decode_stream(lines_of(lines), **kwargs)]


def deltas(events):
    return [e.delta for e in events if e.delta]


class TestDecodeLine:
    """Tests for single-line decoding."""

    def test_content_line(self):
        event = decode_line('{"message":{"role":"assistant","content":"Hel"},"done":false}')
        assert event == StreamEvent(delta="Hel", role="assistant", done=False)

    def test_done_line_carries_usage(self):
        """Test that the terminal line reports its counters."""
        event = decode_line(json.dumps({
            "message": {"role": "assistant", "content": ""},
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 12,
            "eval_count": 34,
            "total_duration": 5000,
        }))
        assert event.done
        assert event.delta is None
        assert event.done_reason == "stop"
        assert event.usage == {"prompt_eval_count": 12, "eval_count": 34, "total_duration": 5000}

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "not-json",
        "[1, 2, 3]",
        '"just a string"',
        "{}",
        '{"message": {"role": "assistant"}}',
        '{"message": "wrong shape"}',
        '{"message": {"content": "unterminated"',
    ])
    def test_unusable_lines_are_skipped(self, line):
        """Test that malformed or empty lines decode to nothing."""
        assert decode_line(line) is None

    def test_error_line_is_skipped(self, caplog):
        """Test that an in-stream error report is logged and decodes to nothing."""
        with caplog.at_level(logging.WARNING, logger="ollachat.stream.decoder"):
            assert decode_line('{"error":"model not found"}') is None
        assert "model not found" in caplog.text

    @given(st.text())
    def test_arbitrary_text_never_crashes(self, line: str):
        """Property test: any text decodes to an event or None."""
        result = decode_line(line)
        assert result is None or isinstance(result, StreamEvent)


class TestDecodeStream:
    """Tests for whole-stream decoding."""

    @pytest.mark.asyncio
    async def test_fragments_in_order(self):
        """Test Hel + lo + done gives two deltas and a terminal event."""
        events = await collect([
            '{"message":{"content":"Hel"}}',
            '{"message":{"content":"lo"}}',
            '{"done":true}',
        ])

        assert deltas(events) == ["Hel", "lo"]
        assert events[-1].done
        assert "".join(deltas(events)) == "Hello"

    @pytest.mark.asyncio
    async def test_malformed_line_is_skipped(self):
        """Test that a bad line between good ones is dropped without error."""
        events = await collect([
            '{"message":{"content":"A"}}',
            "not-json",
            '{"message":{"content":"B"}}',
            '{"done":true}',
        ])

        assert deltas(events) == ["A", "B"]
        assert events[-1].done

    @pytest.mark.asyncio
    async def test_stops_after_done(self):
        """Test that lines after the terminal event are not read."""
        events = await collect([
            '{"message":{"content":"A"}}',
            '{"done":true}',
            '{"message":{"content":"late"}}',
        ])

        assert deltas(events) == ["A"]

    @pytest.mark.asyncio
    async def test_ends_when_source_exhausted(self):
        events = await collect(['{"message":{"content":"A"}}'])

        assert deltas(events) == ["A"]
        assert not any(e.done for e in events)

    @pytest.mark.asyncio
    async def test_cancellation_flag_checked_before_each_line(self):
        """Test that decoding stops once the flag is raised."""
        seen = []

        def is_cancelled():
            return len(seen) >= 1

        async for event in decode_stream(
            lines_of(['{"message":{"content":"A"}}', '{"message":{"content":"B"}}', '{"done":true}']),
            is_cancelled=is_cancelled,
        ):
            seen.append(event)

        assert deltas(seen) == ["A"]

    @pytest.mark.asyncio
    async def test_error_line_ends_without_terminal_event(self):
        """Test that an error report yields no event, so the stream never completes."""
        events = await collect(['{"message":{"content":"A"}}', '{"error":"out of memory"}'])

        assert deltas(events) == ["A"]
        assert not any(e.done for e in events)

    @given(st.lists(st.text(alphabet=st.characters(blacklist_categories=("Cs",)), min_size=1), max_size=20))
    def test_concatenated_deltas_match_sent_fragments(self, fragments):
        """Property test: accumulated deltas equal the fragments sent, in order."""
        lines = [json.dumps({"message": {"content": f}}) for f in fragments] + ['{"done":true}']
        events = asyncio.run(collect(lines))

        assert "".join(deltas(events)) == "".join(fragments)
