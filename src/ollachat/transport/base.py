from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Any

from .models import ConnectivityResult, GenerationRequest, ModelInfo, PullProgress


class InferenceTransport(ABC):
    """Abstract client for an inference server.

    This module hides the design decision of how the server is reached.
    Implementations must handle:
    - Endpoint layout and request encoding
    - Timeouts (short for probes, longer for generation)
    - Mapping transport failures onto ``ollachat.errors.TransportError``

    No retries happen at this layer; retry policy belongs to the caller.

    Supports async context manager protocol for proper resource cleanup:
        async with transport:
            models = await transport.list_models()
    """

    @abstractmethod
    async def test_connectivity(self) -> ConnectivityResult:
        """Probe the server.

        Returns:
            ConnectivityResult with ``ok`` and a diagnostic message.
            Never raises for network failures.
        """

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """List installed models.

        Raises:
            TransportError: On any transport, status or decoding failure
        """

    @abstractmethod
    async def pull_model(self, name: str) -> None:
        """Ask the server to download a model.

        Raises:
            TransportError: If the server does not accept the request
        """

    @abstractmethod
    async def pull_status(self) -> PullProgress:
        """Fetch the current download progress snapshot.

        Raises:
            TransportError: On any transport, status or decoding failure
        """

    @abstractmethod
    def open_chat_stream(
        self, request: GenerationRequest
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open a streaming chat request.

        Usage:
            async with transport.open_chat_stream(request) as lines:
                async for line in lines:
                    ...

        The context manager raises the classified error before yielding
        when the server refuses the request. Leaving the context closes
        the connection, which is how an in-flight stream is aborted.

        Raises:
            TransportError: On connection failure or a non-2xx status,
                and from the line iterator on mid-stream failures
        """

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    async def __aenter__(self) -> "InferenceTransport":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup."""
        await self.close()
