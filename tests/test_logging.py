"""
Tests for structured logging.

Covers:
- JSON formatting of messages, extras and context fields
- Exception payloads from LedgerKernelError subclasses
- LogContext set / bind / clear
- AuditRecord flattening and error kinds
- configure_logging idempotency and get_logger namespacing
"""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.domain.audit import AuditAction, AuditRecord
from ledger_kernel.exceptions import ScheduleNotFoundError
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    reset_logging()
    LogContext.clear()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def stream():
    buffer = StringIO()
    configure_logging(level=logging.DEBUG, stream=buffer)
    return buffer


def _records(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


def _structured_handlers() -> list[logging.Handler]:
    # pytest attaches its own capture handlers; only count ours
    return [
        h for h in logging.getLogger("ledger_kernel").handlers
        if isinstance(h.formatter, StructuredFormatter)
    ]


class TestStructuredFormatter:

    def test_message_and_extras(self, stream):
        entry_id = uuid4()
        get_logger("services.journal").info(
            "entry_posted",
            extra={"entry_id": entry_id, "total": Decimal("12.50"), "entry_date": date(2024, 3, 10)},
        )
        (record,) = _records(stream)
        assert record["message"] == "entry_posted"
        assert record["level"] == "INFO"
        assert record["logger"] == "ledger_kernel.services.journal"
        assert record["entry_id"] == str(entry_id)
        assert record["total"] == "12.50"
        assert record["entry_date"] == "2024-03-10"

    def test_context_fields_included(self, stream):
        with LogContext.bind(organization_id="org-1", schedule_id="sch-1"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")
        inside, outside = _records(stream)
        assert inside["organization_id"] == "org-1"
        assert inside["schedule_id"] == "sch-1"
        assert "schedule_id" not in outside

    def test_exception_fields(self, stream):
        try:
            raise ScheduleNotFoundError("sch-404")
        except ScheduleNotFoundError:
            get_logger("test").exception("lookup_failed")
        (record,) = _records(stream)
        assert record["exc_type"] == "ScheduleNotFoundError"
        assert record["exc_code"] == "SCHEDULE_NOT_FOUND"
        assert record["exc_schedule_id"] == "sch-404"
        assert "Traceback" in record["traceback"]

    def test_formatter_standalone(self):
        record = logging.LogRecord("ledger_kernel.x", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["message"] == "hello world"
        assert payload["level"] == "WARNING"

    def test_error_kind_included(self, stream):
        try:
            raise ScheduleNotFoundError("sch-404")
        except ScheduleNotFoundError:
            get_logger("test").exception("lookup_failed")
        (record,) = _records(stream)
        assert record["exc_kind"] == "not_found"

    def test_audit_record_flattened(self, stream):
        org_id, actor_id = uuid4(), uuid4()
        audit = AuditRecord(
            action=AuditAction.HOLIDAY_ADDED,
            actor_id=actor_id,
            organization_id=org_id,
            resource_type="holiday",
            resource_id="h-1",
            timestamp=datetime(2024, 3, 15, 12, 0, tzinfo=UTC),
            metadata={"holiday_date": date(2024, 5, 3)},
        )
        get_logger("test").info("audit_record", extra={"audit": audit})
        (record,) = _records(stream)
        assert record["action"] == "holiday_added"
        assert record["resource_id"] == "h-1"
        assert record["metadata"] == {"holiday_date": "2024-05-03"}
        assert record["audit_ts"] == "2024-03-15T12:00:00+00:00"
        assert record["organization_id"] == str(org_id)
        assert "audit" not in record

    def test_bound_context_wins_over_audit_ids(self, stream):
        audit = AuditRecord(
            action=AuditAction.HOLIDAY_ADDED,
            actor_id=uuid4(),
            organization_id=uuid4(),
            resource_type="holiday",
            resource_id="h-1",
            timestamp=datetime(2024, 3, 15, tzinfo=UTC),
        )
        with LogContext.bind(organization_id="org-ctx"):
            get_logger("test").info("audit_record", extra={"audit": audit})
        (record,) = _records(stream)
        assert record["organization_id"] == "org-ctx"


class TestLogContext:

    def test_set_and_clear(self):
        LogContext.set(correlation_id="c-1", entry_id="e-1")
        assert LogContext.get_all() == {"correlation_id": "c-1", "entry_id": "e-1"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(entry_id="outer")
        with LogContext.bind(entry_id="inner", run_id=uuid4()):
            assert LogContext.get_all()["entry_id"] == "inner"
        assert LogContext.get_all() == {"entry_id": "outer"}

    def test_set_ignores_unknown_and_stringifies(self):
        entry_id = uuid4()
        LogContext.set(entry_id=entry_id, colour="blue", run_id=None)
        assert LogContext.get_all() == {"entry_id": str(entry_id)}

    def test_bind_ignores_unknown_and_none(self):
        with LogContext.bind(colour="blue", entry_id=None):
            assert LogContext.get_all() == {}


class TestConfiguration:

    def test_idempotent(self, stream):
        before = _structured_handlers()
        second = StringIO()
        configure_logging(level=logging.DEBUG, stream=second)
        get_logger("test").info("once")
        assert _structured_handlers() == before
        assert len(before) == 1
        assert second.getvalue() == ""
        assert [r["message"] for r in _records(stream)] == ["once"]

    def test_level_applied(self):
        buffer = StringIO()
        configure_logging(level=logging.WARNING, stream=buffer)
        get_logger("test").info("hidden")
        get_logger("test").warning("shown")
        assert [r["message"] for r in _records(buffer)] == ["shown"]

    def test_level_by_name(self):
        configure_logging(level="debug", stream=StringIO())
        assert logging.getLogger("ledger_kernel").level == logging.DEBUG

    def test_does_not_propagate(self, stream):
        assert logging.getLogger("ledger_kernel").propagate is False

    def test_get_logger_namespace(self):
        assert get_logger("batch.scheduler").name == "ledger_kernel.batch.scheduler"
