from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from pos_offline import __version__
from pos_offline.core.observability import get_correlation_id

DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 10
MAIN_LOG_NAME = "tracking.log"
OPERATIONAL_ERROR_LOG_NAME = "operational_error.log"
CRASH_LOG_NAME = "crash.log"
CRASH_LOGGER_NAME = "pos_offline.crash"


class JsonLinesFormatter(logging.Formatter):
    """Renders each record as a single JSON object.

    The correlation id comes from the record when a caller passed one
    explicitly, otherwise from the active ``OperationContext``. Structured
    context travels in ``extra={"extra": {...}}`` and is kept as a nested
    object instead of being flattened into the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        context = getattr(record, "extra", None)
        if isinstance(context, dict) and context:
            event["extra"] = context
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


class LevelBandFilter(logging.Filter):
    """Lets through records whose level falls in ``[lowest, highest]``; ``highest=None`` is open."""

    def __init__(self, lowest: int, highest: int | None = None) -> None:
        super().__init__()
        self.lowest = lowest
        self.highest = highest

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno < self.lowest:
            return False
        return self.highest is None or record.levelno <= self.highest


@dataclass(frozen=True)
class _LogFile:
    name: str
    lowest: int | None
    highest: int | None = None


# tracking.log takes everything at the configured level, operational_error.log
# only plain ERROR records (failed sync attempts, abandoned operations) and
# crash.log only CRITICAL ones.
_LOG_FILES = (
    _LogFile(MAIN_LOG_NAME, lowest=None),
    _LogFile(OPERATIONAL_ERROR_LOG_NAME, lowest=logging.ERROR, highest=logging.ERROR),
    _LogFile(CRASH_LOG_NAME, lowest=logging.CRITICAL),
)


def _max_bytes_from_env() -> int:
    raw_value = os.getenv("POS_OFFLINE_LOG_MAX_BYTES", "")
    try:
        return int(raw_value) if raw_value else DEFAULT_LOG_MAX_BYTES
    except ValueError:
        return DEFAULT_LOG_MAX_BYTES


def _replace_root_handlers(root_logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)


def configure_logging(
    log_dir: Path,
    *,
    max_bytes: int | None = None,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = logging.INFO,
) -> None:
    """Route the root logger to the three rotating JSONL files under ``log_dir``.

    Calling it again replaces the previous handlers, so tests and the CLI can
    point logging at a fresh directory.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = JsonLinesFormatter()
    handlers: list[logging.Handler] = []
    for spec in _LOG_FILES:
        handler = RotatingFileHandler(
            log_dir / spec.name,
            maxBytes=max_bytes or _max_bytes_from_env(),
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        if spec.lowest is None:
            handler.setLevel(level)
        else:
            handler.setLevel(spec.lowest)
            handler.addFilter(LevelBandFilter(spec.lowest, spec.highest))
        handlers.append(handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    _replace_root_handlers(root_logger, handlers)


def log_operational_error(
    logger: logging.Logger,
    message: str,
    *,
    exc: BaseException | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """ERROR record bound for operational_error.log, with the exception attached when given."""
    exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else False
    logger.error(message, exc_info=exc_info, extra={"extra": extra} if extra else None)


def write_crash_log(exc_type: type[BaseException], exc: BaseException, tb: Any, log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.getLogger(CRASH_LOGGER_NAME).critical(
        "Unhandled exception",
        exc_info=(exc_type, exc, tb),
        extra={
            "extra": {
                "version": __version__,
                "python": sys.version,
                "executable": sys.executable,
                "cwd": str(Path.cwd()),
            }
        },
    )
    return log_dir / CRASH_LOG_NAME
