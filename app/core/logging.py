"""
app/core/logging.py

Purpose: Logging configuration

- JSON logs in production, coloured logs in development
- Conversation context (user, message, state, intent, payment reference)
  attached to every record emitted inside a LogContext
"""

import logging
import sys
import json
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict

from app.core.config import settings


CONTEXT_FIELDS = ("user_id", "message_id", "state", "intent", "reference")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("ledgerchat_log_context", default={})


class ContextFilter(logging.Filter):
    """
    Copies the active LogContext onto each record.

    Runs after the record is built, so values passed through ``extra``
    are kept as given.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if getattr(record, field, None) is not None}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line for the log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context_of(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        message = f"{color}[{timestamp}] {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = _context_of(record)
        if context:
            message += " [" + ", ".join(f"{key}={value}" for key, value in context.items()) + "]"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging():
    """
    Configures the root logger once per process.

    JSON output in production, human-readable output elsewhere; the
    context filter sits on the handler so every logger benefits.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if settings.is_production else DevelopmentFormatter())
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Client libraries log every request at INFO
    for noisy in ("httpx", "httpcore", "motor", "pymongo", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger("ledgerchat")
    logger.info(f"Logging configured ({settings.ENVIRONMENT}, level {settings.LOG_LEVEL})")
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"ledgerchat.{name}")


class LogContext:
    """
    Adds structured context to every log record emitted inside the block.

    Contexts nest; inner values override outer ones until the inner block
    exits. The context lives in a ContextVar, so concurrent asyncio tasks
    each see their own.

    Usage:
        with LogContext(user_id="2348012345678", state="LOGGING_SALE"):
            logger.info("Gathering sale details")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._token = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
