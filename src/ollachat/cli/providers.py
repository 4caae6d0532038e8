"""Provider factory functions for CLI.

Centralizes creation of the store and transport from settings.
Hides configuration details from command implementations.
"""

import typer
from pydantic import ValidationError
from rich.console import Console

from ..config import Settings, load_settings
from ..conversation import ConversationStore, create_conversation_store
from ..errors import InvalidEndpointError
from ..logging_config import init_logging
from ..transport import InferenceTransport, create_transport

# Default console for output
_console = Console()


def get_settings(console: Console | None = None) -> Settings:
    """Load settings and initialize logging.

    Raises:
        SystemExit: If an environment variable holds an invalid value
    """
    con = console or _console
    try:
        settings = load_settings()
    except ValidationError as e:
        con.print(f"[red]Error: invalid configuration: {e}[/red]")
        raise typer.Exit(code=1)
    init_logging(settings.log_level, settings.log_dir)
    return settings


def get_store(settings: Settings) -> ConversationStore:
    """Create the conversation store.

    Environment variables:
        OLLACHAT_STORE: Backend type (sqlite or memory; default: sqlite)
        OLLACHAT_DB_PATH: SQLite database file (default: ./ollachat.db)
    """
    if settings.store == "sqlite":
        return create_conversation_store("sqlite", path=settings.db_path)
    return create_conversation_store(settings.store)


def get_transport(settings: Settings, console: Console | None = None) -> InferenceTransport:
    """Create the Ollama transport.

    Raises:
        SystemExit: If OLLACHAT_SERVER_URL is not a usable URL

    Environment variables:
        OLLACHAT_SERVER_URL: API root (default: http://localhost:11434/api)
        OLLACHAT_PROBE_TIMEOUT: Connectivity probe timeout in seconds
        OLLACHAT_REQUEST_TIMEOUT: Connect and per-read timeout in seconds
    """
    con = console or _console
    try:
        return create_transport(
            "ollama",
            base_url=settings.server_url,
            probe_timeout=settings.probe_timeout,
            request_timeout=settings.request_timeout,
        )
    except InvalidEndpointError as e:
        con.print(f"[red]Error: {e.user_message}[/red]")
        raise typer.Exit(code=1)
