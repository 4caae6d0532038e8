from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PayloadMessage(BaseModel):
    """One conversation entry as sent to the server."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="Role of the message sender: 'user', 'assistant', or 'system'")
    content: str = Field(description="Content of the message")
    images: list[str] | None = Field(default=None, description="Base64-encoded images")


class GenerationRequest(BaseModel):
    """A chat request. Transient, never persisted."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(description="Model identifier")
    messages: list[PayloadMessage] = Field(description="Ordered conversation payload")
    stream: bool = Field(default=True, description="Ask the server for an NDJSON stream")
    options: dict[str, Any] | None = Field(default=None, description="Sampling options passed through")

    def to_wire(self) -> dict[str, Any]:
        """Request body for ``POST /chat``."""
        body = self.model_dump(exclude_none=True)
        for message in body["messages"]:
            if not message.get("images"):
                message.pop("images", None)
        return body


class ModelDetails(BaseModel):
    """Optional model metadata reported by ``/tags``."""

    format: str | None = None
    family: str | None = None
    parameter_size: str | None = None
    quantization_level: str | None = None


class ModelInfo(BaseModel):
    """A model installed on the server."""

    name: str
    size: int = 0
    modified_at: str = ""
    details: ModelDetails | None = None


class ModelsResponse(BaseModel):
    """Body of ``GET /tags``."""

    models: list[ModelInfo] = Field(default_factory=list)


class PullProgress(BaseModel):
    """Progress snapshot from ``GET /show?detailed=true``."""

    status: str | None = None
    digest: str | None = None
    total: int | None = None
    completed: int | None = None

    @property
    def fraction(self) -> float | None:
        """Completed fraction in [0, 1], or None when unknown."""
        if self.total and self.completed is not None and self.total > 0:
            return min(self.completed / self.total, 1.0)
        return None


class ConnectivityResult(BaseModel):
    """Outcome of a connectivity probe."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    message: str = ""
