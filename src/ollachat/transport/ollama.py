import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import DEFAULT_SERVER_URL
from ..errors import (
    DecodingFailedError,
    InvalidEndpointError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    TransportError,
    TransportOtherError,
    UnreachableError,
)
from .base import InferenceTransport
from .models import (
    ConnectivityResult,
    GenerationRequest,
    ModelInfo,
    ModelsResponse,
    PullProgress,
)

logger = logging.getLogger(__name__)


def _validate_base_url(base_url: str) -> httpx.URL:
    """Parse the base URL, rejecting anything that is not absolute http(s)."""
    try:
        url = httpx.URL(base_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise InvalidEndpointError(str(base_url)) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidEndpointError(str(base_url))
    return url


def classify_error(exc: BaseException) -> TransportError:
    """Map an httpx (or already classified) exception onto the taxonomy."""
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return InvalidEndpointError(str(exc))
    # ConnectTimeout is a TimeoutException, so timeouts are checked first
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(str(exc))
    if isinstance(exc, httpx.ConnectError):
        return UnreachableError(str(exc))
    return TransportOtherError(exc)


def _error_detail(response: httpx.Response) -> str:
    """Extract the server's error text; Ollama sends ``{"error": "..."}``."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text.strip()
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return response.text.strip()


def _check_status(response: httpx.Response) -> None:
    if response.status_code == 429:
        raise RateLimitedError(_error_detail(response))
    if not response.is_success:
        raise ServerError(response.status_code, _error_detail(response))


class OllamaTransport(InferenceTransport):
    """Ollama HTTP API transport.

    Hidden design decisions:
    - httpx.AsyncClient setup and connection reuse
    - Endpoint paths relative to the configured base URL
    - Timeout policy: the request timeout bounds connecting and each read,
      so a stream that keeps delivering bytes is never cut off
    - Error classification
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        probe_timeout: float = 5.0,
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        **client_kwargs: Any
    ):
        """Initialize the Ollama transport.

        Args:
            base_url: API root, e.g. ``http://localhost:11434/api``
            probe_timeout: Timeout for ``test_connectivity``
            request_timeout: Connect and per-read timeout for other calls
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
            **client_kwargs: Additional kwargs for httpx.AsyncClient

        Raises:
            InvalidEndpointError: If ``base_url`` is not an absolute http(s) URL
        """
        self._base_url = _validate_base_url(base_url)
        self._probe_timeout = probe_timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(request_timeout),
            transport=transport,
            **client_kwargs
        )

    @property
    def base_url(self) -> str:
        """The API root this transport talks to."""
        return str(self._base_url)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise classify_error(exc) from exc
        logger.debug("%s %s -> %d", method, path, response.status_code)
        _check_status(response)
        return response

    async def test_connectivity(self) -> ConnectivityResult:
        """Probe ``GET /version`` with the short probe timeout."""
        logger.info("Testing connection: %s/version", self.base_url)
        try:
            response = await self._client.get("/version", timeout=self._probe_timeout)
        except httpx.HTTPError as exc:
            error = classify_error(exc)
            logger.warning("Connection test failed: %s", error.user_message)
            return ConnectivityResult(ok=False, message=f"Connection failed: {error.user_message}")

        if response.is_success:
            body = response.text.strip()
            return ConnectivityResult(ok=True, message=f"Connected: {body}" if body else "Connected")
        return ConnectivityResult(ok=False, message=f"Server returned HTTP {response.status_code}")

    async def list_models(self) -> list[ModelInfo]:
        """List installed models from ``GET /tags``."""
        response = await self._request("GET", "/tags")
        try:
            return ModelsResponse.model_validate_json(response.content).models
        except ValidationError as exc:
            logger.error("Decoding error for /tags: %s", exc)
            raise DecodingFailedError(str(exc)) from exc

    async def pull_model(self, name: str) -> None:
        """Request a model download with ``POST /pull``."""
        await self._request("POST", "/pull", json={"name": name})
        logger.info("Pull accepted for %s", name)

    async def pull_status(self) -> PullProgress:
        """Fetch ``GET /show?detailed=true``."""
        response = await self._request("GET", "/show", params={"detailed": "true"})
        try:
            return PullProgress.model_validate_json(response.content)
        except ValidationError as exc:
            raise DecodingFailedError(str(exc)) from exc

    @asynccontextmanager
    async def open_chat_stream(self, request: GenerationRequest) -> AsyncIterator[AsyncIterator[str]]:
        """Open ``POST /chat`` and yield its body as text lines."""
        body = request.to_wire()
        logger.info("POST /chat model=%s messages=%d", request.model, len(request.messages))
        try:
            async with self._client.stream("POST", "/chat", json=body) as response:
                if not response.is_success:
                    await response.aread()
                    _check_status(response)
                yield self._iter_lines(response)
        except httpx.HTTPError as exc:
            raise classify_error(exc) from exc

    @staticmethod
    async def _iter_lines(response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.HTTPError as exc:
            raise classify_error(exc) from exc

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
