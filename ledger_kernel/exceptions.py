"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the routing layer, the batch processor, tests) must react to errors
without parsing message strings. Every exception therefore carries:

  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute, one of four categories the API layer maps to
     responses: NOT_FOUND, INVALID_STATE, VALIDATION_FAILURE, CONFLICT
  4. Structured DATA attributes (ids, statuses, dates) set before the message

Example:
    try:
        journal.post_entry(entry_id)
    except ClosedPeriodError as e:
        api_response(status=409, code=e.code, kind=e.kind, period=e.period_name)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- FiscalCalendarError
    |   +-- FiscalYearNotFoundError          NOT_FOUND
    |   +-- DuplicateFiscalYearCodeError     VALIDATION_FAILURE
    |   +-- InvalidDateRangeError            VALIDATION_FAILURE
    |   +-- FiscalYearOverlapError           VALIDATION_FAILURE
    |   +-- FiscalYearStateError             INVALID_STATE
    |   +-- FiscalYearHasOpenPeriodsError    INVALID_STATE
    |   +-- FiscalYearNotEmptyError          INVALID_STATE
    |   +-- PeriodNotFoundError              NOT_FOUND
    |   +-- NoPeriodForDateError             NOT_FOUND
    |   +-- PeriodStateError                 INVALID_STATE
    |   +-- ClosedPeriodError                INVALID_STATE
    |
    +-- AccountError
    |   +-- AccountNotFoundError             NOT_FOUND
    |
    +-- JournalEntryError
    |   +-- EntryNotFoundError               NOT_FOUND
    |   +-- EntryStateError                  INVALID_STATE
    |   +-- EntryAlreadyPostedError          CONFLICT
    |   +-- ApprovalRequiredError            INVALID_STATE
    |   +-- UnbalancedEntryError             VALIDATION_FAILURE
    |   +-- InsufficientLinesError           VALIDATION_FAILURE
    |   +-- InvalidLineError                 VALIDATION_FAILURE
    |   +-- EntryValidationError             VALIDATION_FAILURE
    |
    +-- ReversalError
    |   +-- EntryNotPostedError              INVALID_STATE
    |   +-- EntryAlreadyReversedError        INVALID_STATE
    |   +-- ReversalDateError                VALIDATION_FAILURE
    |   +-- AutoReversalDateError            VALIDATION_FAILURE
    |   +-- AutoReversalNotScheduledError    INVALID_STATE
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError            NOT_FOUND
    |   +-- TemplateStateError               INVALID_STATE
    |   +-- TemplateValidationError          VALIDATION_FAILURE
    |   +-- TemplateVariableError            VALIDATION_FAILURE
    |
    +-- ScheduleError
    |   +-- ScheduleNotFoundError            NOT_FOUND
    |   +-- ScheduleStateError               INVALID_STATE
    |   +-- ScheduleValidationError          VALIDATION_FAILURE
    |   +-- DuplicateExecutionError          CONFLICT
    |   +-- HolidayNotFoundError             NOT_FOUND
    |   +-- DuplicateHolidayError            VALIDATION_FAILURE
    |
    +-- ValidationRuleError
    |   +-- ValidationRuleNotFoundError      NOT_FOUND
    |   +-- DuplicateValidationRuleError     VALIDATION_FAILURE
    |   +-- InvalidRuleConditionError        VALIDATION_FAILURE
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError              CONFLICT
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError       INVALID_STATE

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Batch operations (bulk_post, bulk_delete, process_due_schedules,
   process_auto_reversals) catch LedgerKernelError per item and record
   ``error_code`` / ``error_kind`` in the item result.

2. ConcurrencyError and EntryAlreadyPostedError are CONFLICT: the caller
   may re-read and retry.

3. EntryValidationError carries the full list of failed rule results in
   ``results`` so the caller can render every problem at once.

===============================================================================
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable error category surfaced to callers."""

    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    VALIDATION_FAILURE = "validation_failure"
    CONFLICT = "conflict"


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must define `code` and `kind` class attributes.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.INVALID_STATE


# Fiscal calendar


class FiscalCalendarError(LedgerKernelError):
    """Base exception for fiscal year and period errors."""

    code: str = "FISCAL_CALENDAR_ERROR"


class FiscalYearNotFoundError(FiscalCalendarError):
    code: str = "FISCAL_YEAR_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, fiscal_year_id: str):
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year not found: {fiscal_year_id}")


class DuplicateFiscalYearCodeError(FiscalCalendarError):
    """A fiscal year with this code already exists in the organization."""

    code: str = "DUPLICATE_FISCAL_YEAR_CODE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, year_code: str):
        self.year_code = year_code
        super().__init__(f"Fiscal year with code '{year_code}' already exists")


class InvalidDateRangeError(FiscalCalendarError):
    code: str = "INVALID_DATE_RANGE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"End date {end_date} must be after start date {start_date}"
        )


class FiscalYearOverlapError(FiscalCalendarError):
    """Fiscal year date range intersects another year of the organization."""

    code: str = "FISCAL_YEAR_OVERLAP"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, start_date: str, end_date: str, conflicting_code: str):
        self.start_date = start_date
        self.end_date = end_date
        self.conflicting_code = conflicting_code
        super().__init__(
            f"Date range {start_date} to {end_date} overlaps "
            f"fiscal year '{conflicting_code}'"
        )


class FiscalYearStateError(FiscalCalendarError):
    """Year lifecycle transition attempted from a forbidding status."""

    code: str = "FISCAL_YEAR_INVALID_STATE"

    def __init__(self, fiscal_year_id: str, current_status: str, operation: str):
        self.fiscal_year_id = fiscal_year_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} fiscal year {fiscal_year_id} "
            f"in status '{current_status}'"
        )


class FiscalYearHasOpenPeriodsError(FiscalCalendarError):
    code: str = "FISCAL_YEAR_HAS_OPEN_PERIODS"

    def __init__(self, fiscal_year_id: str, open_periods: int):
        self.fiscal_year_id = fiscal_year_id
        self.open_periods = open_periods
        super().__init__(
            f"Fiscal year {fiscal_year_id} still has {open_periods} open "
            "period(s); close them first or use force"
        )


class FiscalYearNotEmptyError(FiscalCalendarError):
    code: str = "FISCAL_YEAR_NOT_EMPTY"

    def __init__(self, fiscal_year_id: str, entry_count: int):
        self.fiscal_year_id = fiscal_year_id
        self.entry_count = entry_count
        super().__init__(
            f"Fiscal year {fiscal_year_id} owns {entry_count} journal "
            "entries and cannot be deleted"
        )


class PeriodNotFoundError(FiscalCalendarError):
    code: str = "PERIOD_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Fiscal period not found: {period_id}")


class NoPeriodForDateError(FiscalCalendarError):
    """No fiscal period of the organization covers the given date."""

    code: str = "NO_PERIOD_FOR_DATE"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entry_date: str):
        self.entry_date = entry_date
        super().__init__(f"No fiscal period found for date {entry_date}")


class PeriodStateError(FiscalCalendarError):
    code: str = "PERIOD_INVALID_STATE"

    def __init__(self, period_id: str, current_status: str, operation: str):
        self.period_id = period_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} period {period_id} in status '{current_status}'"
        )


class ClosedPeriodError(FiscalCalendarError):
    """Attempted to post or create an entry in a closed or locked period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_name: str, status: str, entry_date: str | None = None):
        self.period_name = period_name
        self.status = status
        self.entry_date = entry_date
        super().__init__(
            f"Period '{period_name}' is {status}; posting is not allowed"
        )


# Accounts


class AccountError(LedgerKernelError):
    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    code: str = "ACCOUNT_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


# Journal entries


class JournalEntryError(LedgerKernelError):
    """Base exception for journal entry errors."""

    code: str = "JOURNAL_ENTRY_ERROR"


class EntryNotFoundError(JournalEntryError):
    code: str = "ENTRY_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class EntryStateError(JournalEntryError):
    """Operation not allowed for the entry's current status."""

    code: str = "ENTRY_INVALID_STATE"

    def __init__(self, entry_id: str, current_status: str, operation: str):
        self.entry_id = entry_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} journal entry {entry_id} "
            f"in status '{current_status}'"
        )


class EntryAlreadyPostedError(JournalEntryError):
    """The entry was posted by a concurrent or earlier call."""

    code: str = "ENTRY_ALREADY_POSTED"
    kind = ErrorKind.CONFLICT

    def __init__(self, entry_id: str, entry_number: str):
        self.entry_id = entry_id
        self.entry_number = entry_number
        super().__init__(f"Journal entry {entry_number} is already posted")


class ApprovalRequiredError(JournalEntryError):
    code: str = "APPROVAL_REQUIRED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(
            f"Journal entry {entry_id} requires approval before posting"
        )


class UnbalancedEntryError(JournalEntryError):
    """Journal entry debits do not equal credits in base currency."""

    code: str = "UNBALANCED_ENTRY"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, debits: str, credits: str, difference: str, currency: str):
        self.debits = debits
        self.credits = credits
        self.difference = difference
        self.currency = currency
        super().__init__(
            f"Unbalanced entry in {currency}: debits={debits}, "
            f"credits={credits}, difference={difference}"
        )


class InsufficientLinesError(JournalEntryError):
    code: str = "INSUFFICIENT_LINES"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, line_count: int, minimum: int = 2):
        self.line_count = line_count
        self.minimum = minimum
        super().__init__(
            f"Journal entry must have at least {minimum} lines, got {line_count}"
        )


class InvalidLineError(JournalEntryError):
    """A single line violates the debit/credit shape rules."""

    code: str = "INVALID_LINE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, line_number: int, reason: str):
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"Line {line_number}: {reason}")


class EntryValidationError(JournalEntryError):
    """The validator reported one or more failed ERROR rules."""

    code: str = "ENTRY_VALIDATION_FAILED"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, results: list):
        self.results = results
        messages = "; ".join(r.message for r in results) or "validation failed"
        super().__init__(f"Journal entry failed validation: {messages}")

    @property
    def rule_codes(self) -> list[str]:
        return [r.rule_code for r in self.results]


# Reversal


class ReversalError(LedgerKernelError):
    """Base exception for reversal and correction errors."""

    code: str = "REVERSAL_ERROR"


class EntryNotPostedError(ReversalError):
    """Only posted entries can be reversed, corrected or auto-reversed."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, current_status: str):
        self.entry_id = entry_id
        self.current_status = current_status
        super().__init__(
            f"Journal entry {entry_id} is '{current_status}', not posted"
        )


class EntryAlreadyReversedError(ReversalError):
    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversing_entry_id: str | None):
        self.entry_id = entry_id
        self.reversing_entry_id = reversing_entry_id
        super().__init__(
            f"Journal entry {entry_id} was already reversed by {reversing_entry_id}"
        )


class ReversalDateError(ReversalError):
    code: str = "INVALID_REVERSAL_DATE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, entry_date: str, reversal_date: str):
        self.entry_date = entry_date
        self.reversal_date = reversal_date
        super().__init__(
            f"Reversal date {reversal_date} cannot be before "
            f"the original entry date {entry_date}"
        )


class AutoReversalDateError(ReversalError):
    code: str = "INVALID_AUTO_REVERSAL_DATE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, entry_date: str, auto_reverse_date: str):
        self.entry_date = entry_date
        self.auto_reverse_date = auto_reverse_date
        super().__init__(
            f"Auto-reversal date {auto_reverse_date} must be after "
            f"the entry date {entry_date}"
        )


class AutoReversalNotScheduledError(ReversalError):
    code: str = "AUTO_REVERSAL_NOT_SCHEDULED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"No auto-reversal is scheduled for entry {entry_id}")


# Templates


class TemplateError(LedgerKernelError):
    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    code: str = "TEMPLATE_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Entry template not found: {template_id}")


class TemplateStateError(TemplateError):
    code: str = "TEMPLATE_INVALID_STATE"

    def __init__(self, template_id: str, current_status: str, operation: str):
        self.template_id = template_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} template {template_id} in status '{current_status}'"
        )


class TemplateValidationError(TemplateError):
    code: str = "TEMPLATE_INVALID"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid entry template: {reason}")


class TemplateVariableError(TemplateError):
    """A template variable is missing, malformed, or not numeric."""

    code: str = "TEMPLATE_VARIABLE_ERROR"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, variable_name: str, reason: str):
        self.variable_name = variable_name
        self.reason = reason
        super().__init__(f"Template variable '{variable_name}': {reason}")


# Recurring schedules


class ScheduleError(LedgerKernelError):
    code: str = "SCHEDULE_ERROR"


class ScheduleNotFoundError(ScheduleError):
    code: str = "SCHEDULE_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Recurring schedule not found: {schedule_id}")


class ScheduleStateError(ScheduleError):
    code: str = "SCHEDULE_INVALID_STATE"

    def __init__(self, schedule_id: str, current_status: str, operation: str):
        self.schedule_id = schedule_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} schedule {schedule_id} in status '{current_status}'"
        )


class ScheduleValidationError(ScheduleError):
    code: str = "SCHEDULE_INVALID"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid recurring schedule: {reason}")


class DuplicateExecutionError(ScheduleError):
    """The occurrence was already generated successfully."""

    code: str = "DUPLICATE_EXECUTION"
    kind = ErrorKind.CONFLICT

    def __init__(self, schedule_id: str, occurrence_date: str):
        self.schedule_id = schedule_id
        self.occurrence_date = occurrence_date
        super().__init__(
            f"Schedule {schedule_id} already generated the occurrence "
            f"of {occurrence_date}"
        )


class HolidayNotFoundError(ScheduleError):
    code: str = "HOLIDAY_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, holiday_id: str):
        self.holiday_id = holiday_id
        super().__init__(f"Holiday not found: {holiday_id}")


class DuplicateHolidayError(ScheduleError):
    code: str = "DUPLICATE_HOLIDAY"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, holiday_date: str):
        self.holiday_date = holiday_date
        super().__init__(f"A holiday is already defined on {holiday_date}")


# Custom validation rules


class ValidationRuleError(LedgerKernelError):
    code: str = "VALIDATION_RULE_ERROR"


class ValidationRuleNotFoundError(ValidationRuleError):
    code: str = "VALIDATION_RULE_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Validation rule not found: {rule_id}")


class DuplicateValidationRuleError(ValidationRuleError):
    code: str = "DUPLICATE_VALIDATION_RULE"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, rule_code: str):
        self.rule_code = rule_code
        super().__init__(f"Validation rule '{rule_code}' already exists")


class InvalidRuleConditionError(ValidationRuleError):
    code: str = "INVALID_RULE_CONDITION"
    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, rule_code: str, reason: str):
        self.rule_code = rule_code
        self.reason = reason
        super().__init__(f"Invalid conditions for rule '{rule_code}': {reason}")


# Concurrency


class ConcurrencyError(LedgerKernelError):
    code: str = "CONCURRENCY_ERROR"
    kind = ErrorKind.CONFLICT


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityError(LedgerKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Posted journal entries, their lines, ledger postings and audit events
    are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
