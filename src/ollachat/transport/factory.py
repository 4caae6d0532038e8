from typing import Any

from .base import InferenceTransport
from .ollama import OllamaTransport


def create_transport(kind: str = "ollama", **config: Any) -> InferenceTransport:
    """Create an inference transport instance.

    This factory function hides which server implementation is used.

    Args:
        kind: Transport type ('ollama')
        **config: Transport-specific configuration
            For Ollama:
                - base_url: str (default: 'http://localhost:11434/api')
                - probe_timeout: float (default: 5.0)
                - request_timeout: float (default: 30.0)
                - transport: httpx.AsyncBaseTransport | None

    Returns:
        Initialized transport instance

    Raises:
        ValueError: If transport type is not supported
        InvalidEndpointError: If the base URL is unusable

    Examples:
        >>> transport = create_transport(
        ...     "ollama",
        ...     base_url="http://localhost:11434/api"
        ... )
    """
    if kind.lower() == "ollama":
        return OllamaTransport(**config)

    raise ValueError(
        f"Unsupported transport: {kind}. "
        f"Supported transports: 'ollama'"
    )
