"""Logging setup for the taskpilot CLI: a rotating log file plus terse console output."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "resolve_level", "get_logger", "get_log_path"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILENAME = "taskpilot.log"

_DEFAULT_LOG_DIR = Path.home() / ".taskpilot" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


def resolve_level(value: int | str | None, default: int = logging.INFO) -> int:
    """Map a level name such as ``"debug"`` (or a number) onto a logging level.

    Raises:
        ValueError: If ``value`` is not a known level name.
    """
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.strip().upper())
    if isinstance(level, int):
        return level
    raise ValueError(f"Unknown log level '{value}'")


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route root logging to ``taskpilot.log`` and, optionally, stderr.

    Later calls are no-ops returning the existing log path unless ``force``
    is set.
    """
    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    numeric = resolve_level(level)
    log_path = _resolve_log_dir(log_dir) / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [
        _file_handler(log_path, numeric, formatter, max_bytes=max_bytes, backup_count=backup_count)
    ]
    if console:
        handlers.append(_console_handler(numeric, formatter))

    logging.basicConfig(level=numeric, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """The log file chosen by the last :func:`setup_logging` call, if any."""
    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("TASKPILOT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _file_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    *,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _console_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    # Task progress goes to stdout; the console log only carries warnings and errors.
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(max(level, logging.WARNING))
    handler.setFormatter(formatter)
    return handler
