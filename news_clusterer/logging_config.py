"""Logging setup shared by the CLI and the HTTP service."""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .config import Settings

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Chatty per-request loggers from the HTTP stack
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access")

# Attributes every LogRecord has; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "thread", "threadName", "exc_info", "exc_text",
    "message", "taskName",
))


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger.

    Log lines go to stderr so command output on stdout stays clean.

    Args:
        level: Log level name, case-insensitive
        log_file: Optional file path that also receives every record
        json_format: Emit one JSON object per line instead of text
        quiet: Logger names capped at WARNING

    Raises:
        ValueError: If `level` is not a known level name
    """
    level_name = level.upper()
    if level_name not in LEVELS:
        raise ValueError(f"Unknown log level: '{level}' (expected one of {', '.join(LEVELS)})")

    root_logger = logging.getLogger()
    root_logger.setLevel(level_name)
    root_logger.handlers.clear()

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_from_settings(
    settings: Settings,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """Apply LOG_LEVEL / LOG_FORMAT / LOG_FILE, with explicit overrides winning."""
    setup_logging(
        level=level or settings.log_level,
        log_file=log_file or settings.log_file or None,
        json_format=settings.log_json,
    )


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying any `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
