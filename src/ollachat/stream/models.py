from pydantic import BaseModel, ConfigDict, Field

USAGE_FIELDS = ("prompt_eval_count", "eval_count", "total_duration")


class StreamEvent(BaseModel):
    """One decoded increment of a chat response. Transient."""

    model_config = ConfigDict(frozen=True)

    delta: str | None = Field(default=None, description="Content fragment, if any")
    role: str | None = Field(default=None, description="Role reported by the server")
    done: bool = Field(default=False, description="Terminal marker")
    done_reason: str | None = Field(default=None, description="Why the server stopped")
    usage: dict[str, int] | None = Field(default=None, description="Token/timing counters on the last event")


class ChunkMessage(BaseModel):
    """``message`` member of a stream line."""

    role: str | None = None
    content: str | None = None


class ChatChunk(BaseModel):
    """Wire shape of one NDJSON line from ``POST /chat``.

    Unknown members are ignored; every member is optional because the
    server's framing is treated as best-effort.
    """

    message: ChunkMessage | None = None
    done: bool | None = None
    done_reason: str | None = None
    error: str | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None
    total_duration: int | None = None

    def usage(self) -> dict[str, int] | None:
        """Counters present on this chunk, or None."""
        counters = {
            name: getattr(self, name)
            for name in USAGE_FIELDS
            if getattr(self, name) is not None
        }
        return counters or None
