"""
Tests for the audit and cache ports.

Covers:
- DatabaseAuditSink writes AuditEvent rows (default sink)
- LoggingAuditSink emits audit_record events
- A failing audit sink or cache never fails the business operation
- Organization-scoped cache invalidation after mutations
"""

from datetime import date

from sqlalchemy import select

from ledger_kernel.models.audit_event import AuditEvent
from ledger_kernel.models.fiscal import FiscalYearStatus
from ledger_kernel.services.audit_sink import LoggingAuditSink
from ledger_kernel.services.fiscal_calendar_service import FiscalCalendarService
from ledger_kernel.services.holiday_service import HolidayCalendarService


class _BrokenSink:
    def log(self, record):
        raise RuntimeError("audit store offline")


class _BrokenCache:
    def invalidate(self, pattern):
        raise ConnectionError("cache offline")


class TestAuditSinks:

    def test_database_sink_is_default(self, session, ctx, deterministic_clock, org_id):
        service = HolidayCalendarService(session, ctx, clock=deterministic_clock)
        holiday = service.add_holiday(date(2024, 5, 3), "Święto Konstytucji 3 Maja")

        event = session.execute(
            select(AuditEvent).where(AuditEvent.organization_id == org_id)
        ).scalar_one()
        assert event.action == "holiday_added"
        assert event.resource_type == "holiday"
        assert event.resource_id == str(holiday.id)
        assert event.details == {"holiday_date": "2024-05-03", "name": "Święto Konstytucji 3 Maja"}
        assert event.actor_id == ctx.actor_id

    def test_logging_sink(self, session, ctx, deterministic_clock, captured_logs):
        service = HolidayCalendarService(session, ctx, clock=deterministic_clock, audit_sink=LoggingAuditSink())
        service.add_holiday(date(2024, 5, 3), "Święto Konstytucji 3 Maja")

        (record,) = [r for r in captured_logs() if r["message"] == "audit_record"]
        assert record["action"] == "holiday_added"
        assert record["metadata"]["holiday_date"] == "2024-05-03"

    def test_failing_sink_is_swallowed(self, session, ctx, deterministic_clock, captured_logs):
        service = HolidayCalendarService(session, ctx, clock=deterministic_clock, audit_sink=_BrokenSink())
        holiday = service.add_holiday(date(2024, 5, 3), "Święto Konstytucji 3 Maja")

        assert holiday.id is not None
        failures = [r for r in captured_logs() if r["message"] == "audit_sink_failed"]
        assert failures[0]["action"] == "holiday_added"
        assert failures[0]["exc_type"] == "RuntimeError"


class TestCacheInvalidation:

    def test_posting_invalidates_org_scoped_patterns(self, journal_service, make_entry, cache, org_id):
        cache.set(f"journal_entries:{org_id}:list", ["stale"])
        cache.set(f"balances:{org_id}:100", "stale")
        cache.set("journal_entries:other-org:list", ["kept"])

        entry = make_entry()
        journal_service.post_entry(entry.id)

        assert f"journal_entries:{org_id}:list" not in cache
        assert f"balances:{org_id}:100" not in cache
        assert "journal_entries:other-org:list" in cache
        assert f"balances:{org_id}:*" in cache.invalidated_patterns

    def test_configured_prefix(self, rent_template, cache, org_id):
        assert f"entry_templates:{org_id}:*" in cache.invalidated_patterns

    def test_failing_cache_is_swallowed(self, session, ctx, deterministic_clock, audit_sink, captured_logs):
        calendar = FiscalCalendarService(
            session, ctx, clock=deterministic_clock, audit_sink=audit_sink, cache=_BrokenCache()
        )
        fiscal_year = calendar.create_fiscal_year("2024", "Rok 2024", date(2024, 1, 1), date(2024, 12, 31))

        assert calendar.open_fiscal_year(fiscal_year.id).status == FiscalYearStatus.OPEN
        failures = [r for r in captured_logs() if r["message"] == "cache_invalidation_failed"]
        assert failures[0]["pattern"] == f"fiscal_years:{ctx.organization_id}:*"
