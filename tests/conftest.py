"""Pytest configuration and shared fixtures."""
import asyncio
import json
import os
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio

from ollachat.conversation import create_conversation_store
from ollachat.transport import ConnectivityResult, InferenceTransport, PullProgress


class ScriptedTransport(InferenceTransport):
    """In-process transport that replays a fixed NDJSON script.

    ``pause_after`` holds the stream before the line with that index until
    ``resume`` is set; ``paused`` is set once the stream is holding.
    """

    def __init__(self, lines=(), *, pause_after=None, open_error=None, stream_error=None):
        self.lines = list(lines)
        self.pause_after = pause_after
        self.open_error = open_error
        self.stream_error = stream_error
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()
        self.requests = []
        self.closed_streams = 0
        self.closed = False

    async def test_connectivity(self):
        return ConnectivityResult(ok=True, message="Connected")

    async def list_models(self):
        return []

    async def pull_model(self, name):
        return None

    async def pull_status(self):
        return PullProgress()

    @asynccontextmanager
    async def open_chat_stream(self, request):
        self.requests.append(request)
        if self.open_error is not None:
            raise self.open_error
        try:
            yield self._lines()
        finally:
            self.closed_streams += 1

    async def _lines(self):
        for index, line in enumerate(self.lines):
            if self.pause_after is not None and index == self.pause_after:
                self.paused.set()
                await self.resume.wait()
            yield line
        if self.stream_error is not None:
            raise self.stream_error

    async def close(self):
        self.closed = True


def ndjson(*objects):
    """Encode objects as stream lines."""
    return [json.dumps(obj) for obj in objects]


def content_lines(*fragments, done=True):
    """Stream lines carrying ``fragments`` and, optionally, the done marker."""
    lines = ndjson(*({"message": {"role": "assistant", "content": f}, "done": False} for f in fragments))
    if done:
        lines += ndjson({"message": {"role": "assistant", "content": ""}, "done": True, "eval_count": len(fragments)})
    return lines


@pytest.fixture
def scripted_transport():
    """Return the ScriptedTransport class."""
    return ScriptedTransport


@pytest.fixture
def stream_lines():
    """Return the helper that builds content stream lines."""
    return content_lines


@pytest.fixture(scope="session")
def server_url():
    """Return the live server URL from the environment, if any."""
    return os.getenv("OLLACHAT_SERVER_URL")


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Connected conversation store, once per backend."""
    kwargs = {"path": tmp_path / "chats.db"} if request.param == "sqlite" else {}
    store = create_conversation_store(request.param, **kwargs)
    await store.connect()
    yield store
    await store.disconnect()


@pytest_asyncio.fixture
async def memory_store():
    """Connected in-memory conversation store."""
    store = create_conversation_store("memory")
    await store.connect()
    yield store
    await store.disconnect()
