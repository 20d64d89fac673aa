"""Logging configuration for Mivna.

Every module obtains its logger through :func:`get_logger`. Output is either
human-readable or one JSON object per line, and contextual fields set with
:class:`LogContext` or :func:`set_context` are attached to every record
emitted while they are active.

Usage:
    from mivna.logging_config import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(operation="generate_diagram", repo="acme/api"):
        logger.info("Invoking edge function")
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("mivna_log_context", default={})

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "context"}

ROOT_LOGGER_NAME = "mivna"


class ContextFilter(logging.Filter):
    """Copy the active log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = dict(_LOG_CONTEXT.get())
        return True


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class HumanFormatter(logging.Formatter):
    """Single-line format for terminals: time, level, logger, message, fields."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = {**getattr(record, "context", {}), **_extra_fields(record)}
        if fields:
            rendered = " ".join(f"{k}={v}" for k, v in fields.items())
            base = f"{base} [{rendered}]"
        return base


class JSONFormatter(logging.Formatter):
    """One JSON document per record, suitable for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "context", {}))
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the ``mivna`` logger hierarchy.

    Safe to call more than once; previously installed handlers are replaced.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines instead of human-readable output
        log_file: Optional path to also write logs to
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JSONFormatter() if json_output else HumanFormatter()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(ContextFilter())
    root.addHandler(stream_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        # Files always get JSON so they can be parsed later
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(ContextFilter())
        root.addHandler(file_handler)

    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger within the ``mivna`` hierarchy."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_context(**fields: Any) -> None:
    """Add fields to the current log context."""
    _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **fields})


def clear_context() -> None:
    """Remove all fields from the current log context."""
    _LOG_CONTEXT.set({})


class LogContext:
    """Context manager that scopes log context fields to a block.

    Example:
        with LogContext(operation="connect_repos", count=3):
            logger.info("Connecting repositories")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token = None

    def __enter__(self) -> "LogContext":
        self._token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._token is not None:
            _LOG_CONTEXT.reset(self._token)
            self._token = None
        return False
