"""
Logging setup for the notification engine.

Four named loggers, one per concern:
- api: request handling and exception handlers
- services: preferences, producers, queue and channel senders
- jobs: delivery dispatcher and behavioral scanner cycles
- db: database errors

Development logs go to stdout in a readable format. Production
(STUDYNOTIFY_ENV=production) writes one rotating JSON file per logger, so
dispatcher and scanner output can be shipped and queried separately.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMES = ("api", "services", "jobs", "db")

# Attributes present on every LogRecord; anything else came from extra={...}
_RESERVED_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Carries timestamp, level, logger, message and source location, the
    formatted traceback when exc_info is set, and every key passed through
    ``extra`` (owner_id, guid, channel, ...).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and key not in payload:
                payload[key] = value

        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line console format.

    Example: [2026-03-10 12:00:00] INFO - studynotify.jobs - Dispatch cycle complete
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def _log_level() -> int:
    """STUDYNOTIFY_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR, CRITICAL), INFO by default."""
    name = os.environ.get("STUDYNOTIFY_LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def _log_dir() -> Path:
    """STUDYNOTIFY_LOG_DIR, ./logs by default (created if missing)."""
    path = Path(os.environ.get("STUDYNOTIFY_LOG_DIR", "logs"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _is_production() -> bool:
    return os.environ.get("STUDYNOTIFY_ENV", "development").lower() == "production"


def _build_handler(logger_name: str, level: int, log_dir: Optional[Path]) -> logging.Handler:
    if log_dir is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ConsoleFormatter())
    else:
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{logger_name}.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        handler.setFormatter(JSONFormatter())
    handler.setLevel(level)
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    (Re)configure the four engine loggers.

    Existing handlers are replaced, so calling this twice does not
    duplicate output.

    Returns:
        Dictionary mapping short logger names to Logger instances
    """
    level = _log_level()
    log_dir = _log_dir() if _is_production() else None

    loggers = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"studynotify.{name}")
        logger.setLevel(level)
        logger.propagate = False
        logger.handlers.clear()
        logger.addHandler(_build_handler(name, level, log_dir))
        loggers[name] = logger

    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get one of the engine loggers, configuring logging on first use.

    Args:
        name: One of api, services, jobs, db

    Raises:
        ValueError: If the name is not one of the engine loggers

    Example:
        >>> logger = get_logger("jobs")
        >>> logger.info("Dispatch cycle complete", extra={"delivered": 3})
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        )

    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """Configure logging at application startup."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
