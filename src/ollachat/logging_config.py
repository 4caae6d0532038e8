"""Logging setup.

Console output goes through rich; an optional rotating file handler keeps
a persistent log next to the database.
"""

import logging
import logging.handlers
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_FILENAME, DEFAULT_LOG_MAX_BYTES

_NOISY_LOGGERS = ("asyncio", "httpx", "httpcore", "aiosqlite")


def init_logging(
    level: str = "WARNING",
    log_dir: Path | None = None,
    console: Console | None = None,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
) -> Path | None:
    """Configure the root logger.

    Existing root handlers are removed so repeated calls (tests, CLI
    re-entry) do not duplicate output.

    Args:
        level: Log level name
        log_dir: Directory for the rotating log file; no file logging if None
        console: Rich console for the console handler (stderr by default)
        max_bytes: Rotate the file after this many bytes
        backup_count: Number of rotated files to keep

    Returns:
        Path of the log file, or None when file logging is disabled
    """
    numeric = getattr(logging, level.upper(), logging.WARNING)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(numeric)

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(numeric)
    root.addHandler(rich_handler)

    log_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / DEFAULT_LOG_FILENAME
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        file_handler.setLevel(numeric)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    logging.getLogger(__name__).debug("Logging initialized (level=%s, file=%s)", level, log_path)
    return log_path
