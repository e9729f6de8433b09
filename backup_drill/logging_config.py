"""
Logging configuration: colored console output with secret scrubbing.

Usage:
    from backup_drill.logging_config import init_logging
    init_logging()
    logging.getLogger("backup_drill.backup").info("Upload complete")
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone

from backup_drill.scrub import Scrubber, get_scrubber

# ANSI color codes for console output
COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[35m",  # Magenta
    "RESET": "\033[0m",
}

# Module-specific colors for tags
TAG_COLORS = {
    "backup_drill.backup": "\033[94m",  # Blue
    "backup_drill.verify": "\033[95m",  # Magenta
    "backup_drill.retention": "\033[96m",  # Cyan
    "backup_drill.storage": "\033[93m",  # Yellow
    "backup_drill.database": "\033[92m",  # Green
    "backup_drill.notify": "\033[97m",  # White
}


class ColoredConsoleFormatter(logging.Formatter):
    """ISO-8601 UTC timestamp, colored level and tag.

    Colors are dropped when the stream is not a TTY.
    """

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        tag = record.name.removeprefix("backup_drill.")

        if self.use_color:
            level_color = COLORS.get(record.levelname, "")
            reset = COLORS["RESET"]
            tag_color = TAG_COLORS.get(record.name, "\033[37m")
            level_str = f"{level_color}{record.levelname:8}{reset}"
            tag_str = f"{tag_color}[{tag}]{reset}"
        else:
            level_str = f"{record.levelname:8}"
            tag_str = f"[{tag}]"

        msg = f"{timestamp} {level_str} {tag_str} {record.getMessage()}"

        if record.exc_text:
            msg += "\n" + record.exc_text
        elif record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class SecretScrubbingFilter(logging.Filter):
    """Rewrites each record's message (and traceback) through a Scrubber."""

    def __init__(self, scrubber: Scrubber | None = None) -> None:
        super().__init__()
        self.scrubber = scrubber or get_scrubber()

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.scrubber(record.getMessage())
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self.scrubber(record.exc_text)
        return True


_initialized = False


def _get_console_level() -> int:
    """Get console log level from environment variables."""
    if os.getenv("DEBUG", "false").lower() == "true":
        return logging.DEBUG
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def init_logging(console_level: int | None = None, force: bool = False) -> None:
    """Initialize the logging system with a single scrubbed console handler."""
    global _initialized

    if _initialized and not force:
        return

    if console_level is None:
        console_level = _get_console_level()

    # Clear any existing handlers on root logger (from basicConfig or other sources)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ColoredConsoleFormatter(use_color=sys.stdout.isatty()))
    console_handler.addFilter(SecretScrubbingFilter())

    root_logger.setLevel(console_level)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    for noisy in ("boto3", "botocore", "s3transfer", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _initialized = True

