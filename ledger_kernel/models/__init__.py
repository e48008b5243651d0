"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.audit_event import AuditEvent
from ledger_kernel.models.fiscal import (
    FiscalPeriod,
    FiscalYear,
    FiscalYearStatus,
    PeriodStatus,
)
from ledger_kernel.models.journal import (
    AccountBalance,
    EntryNumberSequence,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    JournalEntryType,
    LedgerPosting,
    ReversalType,
)
from ledger_kernel.models.recurring import (
    ExecutionStatus,
    ExecutionType,
    Holiday,
    RecurringSchedule,
    ScheduleExecution,
    ScheduleStatus,
)
from ledger_kernel.models.template import (
    EntryTemplate,
    EntryTemplateLine,
    LineSide,
    TemplateAmountType,
    TemplateStatus,
    TemplateVariable,
    VariableType,
)
from ledger_kernel.models.validation_rule import (
    ValidationRule,
    ValidationRuleType,
    ValidationRun,
)


__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "AuditEvent",
    "FiscalYear",
    "FiscalYearStatus",
    "FiscalPeriod",
    "PeriodStatus",
    "JournalEntry",
    "JournalEntryLine",
    "JournalEntryStatus",
    "JournalEntryType",
    "ReversalType",
    "LedgerPosting",
    "AccountBalance",
    "EntryNumberSequence",
    "RecurringSchedule",
    "ScheduleExecution",
    "ScheduleStatus",
    "ExecutionType",
    "ExecutionStatus",
    "Holiday",
    "EntryTemplate",
    "EntryTemplateLine",
    "TemplateVariable",
    "TemplateStatus",
    "TemplateAmountType",
    "LineSide",
    "VariableType",
    "ValidationRule",
    "ValidationRuleType",
    "ValidationRun",
]
