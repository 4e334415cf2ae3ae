"""
Structured logging for the stock ledger and the fulfillment engines.

Every record is written as one JSON object::

    {"ts": "2024-01-15T12:00:00+00:00", "level": "INFO",
     "area": "services.inventory_ledger", "event": "stock_reserved",
     "actor_id": "clerk", "reference": "ORD-202401-0001", "items": {...}}

``event`` is the snake_case message handed to the logger and ``area`` is
the logger name below the ``erp_kernel`` namespace.  Fields bound with
``LogContext.bind`` (who is acting, which document or stock item the work
is for) are merged into every record emitted inside the block.  Kernel
exceptions add their ``code`` and public attributes as ``exc_*`` fields,
so a rejected reservation logs its shortfalls without extra plumbing.
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_NAMESPACE = "erp_kernel"

# Fields a caller may bind.  ``reference`` is the order, purchase or
# movement reference the work is booked under.
CONTEXT_FIELDS = ("correlation_id", "actor_id", "reference", "inventory_id")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"erp_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Per-thread / per-task fields stamped onto every log record."""

    @staticmethod
    def _var(name: str) -> ContextVar[str | None]:
        try:
            return _context[name]
        except KeyError:
            raise TypeError(
                f"Unknown log context field {name!r}; expected one of {CONTEXT_FIELDS}"
            ) from None

    @classmethod
    def set(cls, **fields: object) -> None:
        """Set fields until cleared.  ``None`` values leave a field unchanged."""
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        values = {name: var.get() for name, var in _context.items()}
        return {name: value for name, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: object) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of the block, then restore them."""
        tokens = []
        try:
            for name, value in fields.items():
                var = cls._var(name)
                if value is not None:
                    tokens.append((var, var.set(str(value))))
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}

_RESERVED = frozenset({"ts", "level", "area", "event"})


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; see the module docstring for the shape."""

    def format(self, record: logging.LogRecord) -> str:
        area = record.name
        if area.startswith(f"{_NAMESPACE}."):
            area = area[len(_NAMESPACE) + 1:]
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "area": area,
            "event": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key not in _RESERVED
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger for one area of the kernel, modules or engines."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``erp_kernel`` logger.

    Only the first call has an effect; ``level`` also accepts a name such
    as ``"DEBUG"``.
    """
    if isinstance(level, str):
        name, level = level, logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root = logging.getLogger(_NAMESPACE)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(target)


def reset_logging() -> None:
    """Drop the handler installed by ``configure_logging``.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_NAMESPACE)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
