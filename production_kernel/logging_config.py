"""
Structured JSON logging for the production kernel.

Every record is one JSON line: the envelope (ts, level, logger, message),
the reconciliation context bound with LogContext, then the record's extras.
Kernel values passed as extras are flattened into plain fields so log
queries never have to parse nested objects:

    delta=BalanceDelta              delta_key, direction, target_delta,
                                    produced_delta, calendar_day
    balance=StyleBalance            total_target, total_produced,
                                    current_balance, balance_version
    warning=ReconciliationWarning   warning_code, warning_message and each
                                    entry of the warning's detail

Anywhere else a DeltaKey renders as ``"<event_id>/<DIRECTION>"``.  Context
fields win over extras of the same name.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from production_kernel.domain.values import (
    BalanceDelta,
    DeltaKey,
    ReconciliationWarning,
    StyleBalance,
)

# ---------------------------------------------------------------------------
# Reconciliation context
# ---------------------------------------------------------------------------


class LogContext:
    """
    Fields naming the work a thread or task is doing right now.

    One ContextVar holds the whole set, so a bulk worker started with
    ``contextvars.copy_context()`` inherits its batch and actor.
    """

    FIELDS = (
        "correlation_id",
        "actor_id",
        "batch_id",
        "event_id",
        "style_code",
        "direction",
        "calendar_day",
    )

    _current: ContextVar[dict[str, str] | None] = ContextVar(
        "production_log_context", default=None
    )

    @classmethod
    def _merged(cls, fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(cls._current.get() or {})
        for name, value in fields.items():
            if value is not None:
                merged[name] = value.value if isinstance(value, Enum) else str(value)
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of this context.  None leaves a field as is."""
        cls._current.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._current.get() or {})

    @classmethod
    def clear(cls) -> None:
        cls._current.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields inside the block and restore the previous set on exit."""
        token = cls._current.set(cls._merged(fields))
        try:
            yield cls
        finally:
            cls._current.reset(token)

    @classmethod
    def bind_delta(cls, delta: BalanceDelta):
        """Bind the event, style, direction and calendar day of a delta."""
        return cls.bind(
            event_id=delta.event_id,
            style_code=delta.style_code,
            direction=delta.direction,
            calendar_day=delta.calendar_day,
        )


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _delta_key(key: DeltaKey) -> str:
    return f"{key.event_id}/{key.direction.value}"


def _plain(value: Any) -> Any:
    """Reduce a logged value to JSON types."""
    if isinstance(value, DeltaKey):
        return _delta_key(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, BalanceDelta):
        return dict(_delta_fields(value))
    if isinstance(value, StyleBalance):
        return dict(_balance_fields(value))
    if isinstance(value, ReconciliationWarning):
        return {"event_id": value.event_id, **dict(_warning_fields(value))}
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _delta_fields(delta: BalanceDelta) -> Iterator[tuple[str, Any]]:
    yield "delta_key", _delta_key(delta.key)
    yield "direction", delta.direction.value
    yield "target_delta", delta.target_delta
    yield "produced_delta", delta.produced_delta
    if delta.calendar_day is not None:
        yield "calendar_day", delta.calendar_day


def _balance_fields(balance: StyleBalance) -> Iterator[tuple[str, Any]]:
    yield "total_target", balance.total_target
    yield "total_produced", balance.total_produced
    yield "current_balance", balance.current_balance
    yield "balance_version", balance.version


def _warning_fields(warning: ReconciliationWarning) -> Iterator[tuple[str, Any]]:
    yield "warning_code", warning.code
    yield "warning_message", warning.message
    for name, value in warning.detail.items():
        yield name, _plain(value)


_FLATTENED = {
    "delta": (BalanceDelta, _delta_fields),
    "balance": (StyleBalance, _balance_fields),
    "warning": (ReconciliationWarning, _warning_fields),
}


def _exception_fields(exc: BaseException) -> Iterator[tuple[str, Any]]:
    yield "exc_type", type(exc).__name__
    yield "exc_message", str(exc)
    code = getattr(exc, "code", None)
    if code is not None:
        yield "exc_code", code
    # Kernel errors keep their identifying values as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            yield f"exc_{name}", _plain(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with kernel values flattened."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _STDLIB_KEYS:
                continue
            kind, fields = _FLATTENED.get(key, (None, None))
            if kind is not None and isinstance(value, kind):
                for name, flat in fields(value):
                    payload.setdefault(name, flat)
            else:
                payload.setdefault(key, _plain(value))

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "production_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the production_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Send production_kernel records, as JSON lines, to ``handler`` (or a
    stream handler on ``stream``, default stderr).  Only the first call
    takes effect until reset_logging().
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(out)


def reset_logging() -> None:
    """Drop handlers and allow configure_logging() again.  For tests."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
