"""
PeerLink - Utility functions.

Provides logging setup and small formatting helpers used by the CLI.
"""

import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .constants import (
    DEFAULT_DATA_DIR,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILENAME,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    LOGS_DIR,
)

logger = logging.getLogger(__name__)


def get_default_log_file() -> Path:
    """Location of the rotating log file under the default data directory."""
    return Path(DEFAULT_DATA_DIR).expanduser() / LOGS_DIR / LOG_FILENAME


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the ``peerlink`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Path of a rotating log file, or None for no file logging
        console: Whether to log to the terminal through rich

    Returns:
        The configured package logger
    """
    root = logging.getLogger("peerlink")
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    root.setLevel(numeric_level)

    # Repeated setup replaces handlers instead of stacking them
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if console:
        console_handler = RichHandler(rich_tracebacks=True, show_path=False)
        console_handler.setFormatter(logging.Formatter("%(message)s", datefmt=LOG_DATE_FORMAT))
        root.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
            )
        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {log_file}: {e}")
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            root.addHandler(file_handler)

    if not root.handlers:
        root.addHandler(logging.NullHandler())
    return root


def format_timestamp(timestamp_ms: int, format_str: str = "%H:%M:%S") -> str:
    """
    Format a millisecond epoch timestamp for display.

    Returns:
        Formatted local time, or the raw value if it cannot be converted
    """
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000).strftime(format_str)
    except (OverflowError, OSError, ValueError, TypeError) as e:
        logger.debug(f"Failed to format timestamp {timestamp_ms!r}: {e}")
        return str(timestamp_ms)


def format_size(num_bytes: int) -> str:
    """Human-readable byte count."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """Truncate ``s`` to ``max_length`` characters including the suffix."""
    if len(s) <= max_length:
        return s
    return s[: max(0, max_length - len(suffix))] + suffix
