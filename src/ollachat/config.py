"""Configuration for ollachat.

Centralizes constants and the environment-driven settings model.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Placeholder text shown in the assistant message until the first delta arrives
PENDING_CONTENT = "Generating..."

# Image attachments
MAX_IMAGE_BYTES = 10 * 1024 * 1024  # Encoded PNG size bound
MAX_IMAGE_DIMENSION = 2048  # Longest side after downscaling

# Substrings of model names that accept image input
VISION_MODEL_HINTS = ("llava", "bakllava", "gemma", "mixtral", "mistral", "solar")

# Backup document format version
BACKUP_VERSION = 1

DEFAULT_SERVER_URL = "http://localhost:11434/api"
DEFAULT_CHAT_TITLE = "New Chat"

# Log file rotation
DEFAULT_LOG_FILENAME = "ollachat.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5


class Settings(BaseModel):
    """Runtime settings, normally built by :func:`load_settings`."""

    server_url: str = Field(default=DEFAULT_SERVER_URL, description="Base URL of the Ollama API")
    probe_timeout: float = Field(default=5.0, gt=0, description="Timeout for connectivity probes (s)")
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for connecting and for each read of a request (s)"
    )
    store: str = Field(default="sqlite", description="Conversation store backend: sqlite or memory")
    db_path: Path = Field(default=Path("./ollachat.db"), description="SQLite database file")
    default_model: str = Field(default="llama3.2", description="Model used for new chats")
    log_level: str = Field(default="WARNING", description="Root log level")
    log_dir: Path | None = Field(default=None, description="Directory for rotating log files")

    @field_validator("store")
    @classmethod
    def validate_store(cls, v: str) -> str:
        """Accept only known store backends."""
        v = v.lower()
        if v not in ("sqlite", "memory"):
            raise ValueError("store must be 'sqlite' or 'memory'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


_ENV_FIELDS = {
    "OLLACHAT_SERVER_URL": "server_url",
    "OLLACHAT_PROBE_TIMEOUT": "probe_timeout",
    "OLLACHAT_REQUEST_TIMEOUT": "request_timeout",
    "OLLACHAT_STORE": "store",
    "OLLACHAT_DB_PATH": "db_path",
    "OLLACHAT_DEFAULT_MODEL": "default_model",
    "OLLACHAT_LOG_LEVEL": "log_level",
    "OLLACHAT_LOG_DIR": "log_dir",
}


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Build settings from environment variables.

    A ``.env`` file (``env_file`` or the one found from the working
    directory) is loaded first; variables already set in the environment
    win over the file.

    Raises:
        pydantic.ValidationError: If a variable holds an invalid value
    """
    load_dotenv(env_file)
    values = {
        field: os.environ[var]
        for var, field in _ENV_FIELDS.items()
        if os.environ.get(var)
    }
    return Settings(**values)
