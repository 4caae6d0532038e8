"""Exception taxonomy for ollachat.

Every failure a caller can observe maps to one class here. Each error
carries a ``user_message``: a single human-readable line suitable for
showing in a status bar or dialog without further formatting.
"""

__all__ = [
    "OllachatError",
    "TransportError",
    "InvalidEndpointError",
    "UnreachableError",
    "RequestTimeoutError",
    "RateLimitedError",
    "ServerError",
    "DecodingFailedError",
    "TransportOtherError",
    "GenerationFailedError",
    "ChatNotFoundError",
    "MessageNotFoundError",
    "EmptyInputError",
    "ImageNotSupportedError",
    "ImageTooLargeError",
]


class OllachatError(Exception):
    """Base class for all ollachat errors."""

    default_message = "Unexpected error"

    @property
    def user_message(self) -> str:
        """One-line description for display."""
        detail = str(self)
        if detail and detail != self.default_message:
            return f"{self.default_message}: {detail}"
        return self.default_message


class TransportError(OllachatError):
    """Failure talking to the inference server."""

    default_message = "Network error"


class InvalidEndpointError(TransportError):
    """The configured server address is not a usable HTTP URL."""

    default_message = "Invalid server address"


class UnreachableError(TransportError):
    """Connection refused or host unreachable."""

    default_message = "Cannot connect to the Ollama server, check that it is running"


class RequestTimeoutError(TransportError):
    """The server did not answer within the timeout."""

    default_message = "Request timed out"


class RateLimitedError(TransportError):
    """HTTP 429 from the server."""

    default_message = "Too many requests, try again later"


class ServerError(TransportError):
    """Non-2xx response other than 429, or an error reported inside a stream."""

    default_message = "Server error"

    def __init__(self, status: int | None = None, detail: str = ""):
        self.status = status
        self.detail = detail
        parts = []
        if status is not None:
            parts.append(f"HTTP {status}")
        if detail:
            parts.append(detail)
        super().__init__(" ".join(parts))


class DecodingFailedError(TransportError):
    """A response body could not be decoded into the expected shape."""

    default_message = "Could not decode server response"


class TransportOtherError(TransportError):
    """Any other transport failure; the original exception is kept as ``cause``."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class GenerationFailedError(OllachatError):
    """A generation aborted. ``cause`` holds the transport or decoding error."""

    default_message = "Failed to send message"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(str(cause))

    @property
    def user_message(self) -> str:
        if isinstance(self.cause, OllachatError):
            return f"{self.default_message}: {self.cause.user_message}"
        return super().user_message


class ChatNotFoundError(OllachatError, KeyError):
    """No chat with the given id."""

    default_message = "Chat not found"

    def __str__(self) -> str:
        return Exception.__str__(self)


class MessageNotFoundError(OllachatError, KeyError):
    """No message with the given id."""

    default_message = "Message not found"

    def __str__(self) -> str:
        return Exception.__str__(self)


class EmptyInputError(OllachatError, ValueError):
    """Neither text nor an image was supplied."""

    default_message = "Nothing to send"


class ImageNotSupportedError(OllachatError, ValueError):
    """The chat's model does not accept image input."""

    default_message = "The current model does not support images, use a multimodal model"


class ImageTooLargeError(OllachatError, ValueError):
    """Encoded image exceeds the size bound."""

    default_message = "Image is too large"
