"""
Structured JSON logging for the approval kernel.

Every record is one JSON line.  Transitions bind the acting user, the
document and, once known, the workflow and instance; those fields appear on
every record emitted inside the block.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "approval_kernel"

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"approval_log_{name}", default=None)
    for name in ("actor_id", "entity_id", "workflow_id", "instance_id")
}


class LogContext:
    """Transition-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: var.get() for name, var in _CONTEXT_FIELDS.items() if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the block and restore the previous values after it.

        Values are stringified; None values and unknown names are ignored.
        """
        tokens = [
            (_CONTEXT_FIELDS[name], _CONTEXT_FIELDS[name].set(str(value)))
            for name, value in fields.items()
            if name in _CONTEXT_FIELDS and value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _encode(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    # UUIDs and anything else
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            # Kernel errors keep their identifiers as attributes
            for k, v in vars(exc).items():
                if not k.startswith("_") and k != "code":
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_encode)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the approval_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler (stderr by default) to the kernel logger; later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    handler = handler or logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop the kernel handler so tests can configure again."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
