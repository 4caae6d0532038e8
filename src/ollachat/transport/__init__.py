from .base import InferenceTransport
from .factory import create_transport
from .models import (
    ConnectivityResult,
    GenerationRequest,
    ModelDetails,
    ModelInfo,
    PayloadMessage,
    PullProgress,
)
from .ollama import OllamaTransport, classify_error

__all__ = [
    "InferenceTransport",
    "create_transport",
    "ConnectivityResult",
    "GenerationRequest",
    "ModelDetails",
    "ModelInfo",
    "PayloadMessage",
    "PullProgress",
    "OllamaTransport",
    "classify_error",
]
