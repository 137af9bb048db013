"""
Structured JSON logging for approval workflows.

Every record is one JSON object: a fixed envelope (``ts``, ``level``,
``logger``, ``message``), the workflow context bound for the current call
(request, workflow type, actor, activity), the record's ``extra`` fields,
and an ``error`` object when an exception is attached.

The context lives in contextvars, so it follows a submit through its
thread or task.  The notification dispatcher copies it into its pool
workers, which ties delivery records to the submit that planned them.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Iterator

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "request_id",
    "request_no",
    "workflow_type",
    "actor_id",
    "activity",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"approval_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Workflow fields attached to every record logged in the current context."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Set context fields; None leaves a field unchanged.

        Values are stored as strings (actor ids are ints elsewhere).

        Raises:
            TypeError: a name outside ``CONTEXT_FIELDS``.
        """
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is None:
                raise TypeError(f"unknown log context field: {name}")
            if value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of a block.

        On exit the whole context is restored, including fields changed
        with ``set()`` inside the block.
        """
        saved = {name: var.get() for name, var in _context_vars.items()}
        LogContext.set(**fields)
        try:
            yield
        finally:
            for name, value in saved.items():
                _context_vars[name].set(value)


# ---------------------------------------------------------------------------
# JSON formatting
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, date):
        return obj.isoformat()
    return str(obj)


def _error_payload(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
        # ApprovalKernelError subclasses carry their details as attributes
        fields = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
        if fields:
            error["fields"] = fields
    return error


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            error = _error_payload(record.exc_info[1])
            error["traceback"] = self.formatException(record.exc_info)
            payload["error"] = error

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

ROOT_LOGGER = "approval_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> bool:
    """Install the JSON handler on the ``approval_kernel`` logger.

    Only the first call has an effect; returns whether this call did.
    ``level`` accepts a number or a level name such as ``"DEBUG"``.
    """
    global _configured
    with _lock:
        if _configured:
            return False
        _configured = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)
    return True


def reset_logging() -> None:
    """Remove installed handlers so ``configure_logging`` applies again (tests)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(logging.WARNING)
