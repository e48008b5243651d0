"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry, SqlAccountRegistry
from ledger_kernel.services.audit_sink import (
    AuditSink,
    DatabaseAuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
)
from ledger_kernel.services.cache import (
    CacheInvalidator,
    InMemoryResponseCache,
    NullCacheInvalidator,
)
from ledger_kernel.services.fiscal_calendar_service import FiscalCalendarService
from ledger_kernel.services.holiday_service import HolidayCalendarService
from ledger_kernel.services.journal_service import JournalEntryService
from ledger_kernel.services.recurring_service import RecurringScheduleService
from ledger_kernel.services.reversal_service import ReversalService
from ledger_kernel.services.sequence_service import EntryNumberService
from ledger_kernel.services.template_service import EntryTemplateService
from ledger_kernel.services.validation_service import EntryValidationService

__all__ = [
    "AccountRegistry",
    "AuditSink",
    "CacheInvalidator",
    "DatabaseAuditSink",
    "EntryNumberService",
    "EntryTemplateService",
    "EntryValidationService",
    "FiscalCalendarService",
    "HolidayCalendarService",
    "InMemoryAuditSink",
    "InMemoryResponseCache",
    "JournalEntryService",
    "LoggingAuditSink",
    "NullCacheInvalidator",
    "RecurringScheduleService",
    "ReversalService",
    "SqlAccountRegistry",
]
