"""
Structured JSON logging for the ledger kernel.

Every record is one JSON line.  Request-scoped fields (organization, actor,
entry, schedule, processing run) live in ``LogContext`` and are stamped on
each line; ``LedgerKernelError`` payloads and ``AuditRecord`` extras are
flattened so log pipelines can filter on ``exc_code`` or ``action``
without parsing messages.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import dataclasses
import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.domain.audit import AuditRecord

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "organization_id",
    "actor_id",
    "entry_id",
    "schedule_id",
    "run_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"ledger_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Thread-safe / async-safe holder for the fields stamped on every line.

    Unknown field names and None values are ignored everywhere, so callers
    can pass ``OrgContext.log_fields()`` or a partial dict unchanged.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set context fields. Only known, non-None values are updated."""
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        ctx: dict[str, str] = {}
        for name, var in _context_vars.items():
            val = var.get()
            if val is not None:
                ctx[name] = val
        return ctx

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of the block, then restore them."""
        tokens = []
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

# Fields of an AuditRecord promoted to the top level of the line
_AUDIT_FIELDS = ("action", "resource_type", "resource_id", "metadata")


class _JSONEncoder(json.JSONEncoder):
    """UUIDs, dates, amounts, enums and DTO dataclasses in log payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            # amounts keep their scale: "12.50", not 12.5
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        return super().default(obj)


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
            if key in _STDLIB_KEYS or key in payload:
                continue
            if isinstance(val, AuditRecord):
                self._add_audit(payload, val)
            else:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            self._add_exception(payload, record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)

    @staticmethod
    def _add_audit(payload: dict[str, Any], audit: AuditRecord) -> None:
        for name in _AUDIT_FIELDS:
            payload[name] = getattr(audit, name)
        payload["audit_ts"] = audit.timestamp
        payload.setdefault("organization_id", str(audit.organization_id))
        payload.setdefault("actor_id", str(audit.actor_id))

    @staticmethod
    def _add_exception(payload: dict[str, Any], exc: BaseException) -> None:
        payload["exc_type"] = type(exc).__name__
        payload["exc_message"] = str(exc)
        code = getattr(exc, "code", None)
        if code is not None:
            payload["exc_code"] = code
        kind = getattr(exc, "kind", None)
        if kind is not None:
            payload["exc_kind"] = kind
        # entry numbers, schedule ids, amounts carried by LedgerKernelError subclasses
        for k, v in vars(exc).items():
            if not k.startswith("_") and k not in ("args", "code", "kind"):
                payload[f"exc_{k}"] = v


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "ledger_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ledger_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``ledger_kernel`` logger.

    Idempotent: only the first call after import (or after
    ``reset_logging``) has any effect.  ``level`` accepts a number or a
    level name such as ``"DEBUG"``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level.upper() if isinstance(level, str) else level)
    kernel_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
