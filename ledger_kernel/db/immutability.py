"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posting is irreversible except through a reversing entry.  Once an entry is
POSTED its amounts, accounts, dates and lines are frozen; the only fields
that may still change are the reversal bookkeeping fields (the original is
flipped to REVERSED and linked to its reversing entry) and the scheduled
auto-reverse date.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError, aborting the flush.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | When Immutable                  | What may still change
-------------------|---------------------------------|--------------------------------
JournalEntry       | status POSTED or REVERSED       | reversal fields, auto-reverse
                   |                                 | date, POSTED -> REVERSED
JournalEntryLine   | parent POSTED or REVERSED       | nothing
LedgerPosting      | always                          | nothing
ScheduleExecution  | always                          | nothing
AuditEvent         | always                          | nothing

updated_at / updated_by_id are audit metadata and always allowed.

===============================================================================
USAGE
===============================================================================

Registered by create_tables(), or directly:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_FROZEN_ENTRY_STATUSES = ("POSTED", "REVERSED")


def _status_value(status) -> str | None:
    if status is None:
        return None
    return getattr(status, "value", status)


def _block(entity_type: str, entity_id, operation: str, reason: str, **fields) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Prevent changes to frozen fields of posted or reversed entries.

    Allows DRAFT/PENDING -> POSTED (the posting itself) and
    POSTED -> REVERSED (the reversal link), nothing else.
    """
    from ledger_kernel.models.journal import POSTED_ENTRY_MUTABLE_FIELDS

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = _status_value(status_history.deleted[0])
    else:
        old_status = _status_value(target.status)

    if old_status not in _FROZEN_ENTRY_STATUSES:
        return

    new_status = _status_value(target.status)
    if new_status != old_status and not (
        old_status == "POSTED" and new_status == "REVERSED"
    ):
        _block(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot change status from {old_status} to {new_status}",
            field="status",
        )

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in POSTED_ENTRY_MUTABLE_FIELDS or attr.key == "lines":
            continue
        if attr.history.has_changes():
            _block(
                "JournalEntry",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on {old_status.lower()} journal entry",
                field=attr.key,
            )


def _check_journal_entry_delete(mapper, connection, target):
    if _status_value(target.status) in _FROZEN_ENTRY_STATUSES:
        _block(
            "JournalEntry",
            target.id,
            "DELETE",
            "Posted journal entries cannot be deleted",
        )


def _parent_is_frozen(line) -> bool:
    entry = line.entry
    return entry is not None and _status_value(entry.status) in _FROZEN_ENTRY_STATUSES


def _check_journal_line_immutability(mapper, connection, target):
    if _parent_is_frozen(target):
        _block(
            "JournalEntryLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after the entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if _parent_is_frozen(target):
        _block(
            "JournalEntryLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after the entry is posted",
        )


def _append_only(entity_type: str):
    def _reject_update(mapper, connection, target):
        _block(entity_type, target.id, "UPDATE", f"{entity_type} records are append-only")

    def _reject_delete(mapper, connection, target):
        _block(entity_type, target.id, "DELETE", f"{entity_type} records are append-only")

    return _reject_update, _reject_delete


_posting_update, _posting_delete = _append_only("LedgerPosting")
_execution_update, _execution_delete = _append_only("ScheduleExecution")
_audit_update, _audit_delete = _append_only("AuditEvent")


def _listeners():
    from ledger_kernel.models.audit_event import AuditEvent
    from ledger_kernel.models.journal import JournalEntry, JournalEntryLine, LedgerPosting
    from ledger_kernel.models.recurring import ScheduleExecution

    return [
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalEntryLine, "before_update", _check_journal_line_immutability),
        (JournalEntryLine, "before_delete", _check_journal_line_delete),
        (LedgerPosting, "before_update", _posting_update),
        (LedgerPosting, "before_delete", _posting_delete),
        (ScheduleExecution, "before_update", _execution_update),
        (ScheduleExecution, "before_delete", _execution_delete),
        (AuditEvent, "before_update", _audit_update),
        (AuditEvent, "before_delete", _audit_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    Only for tests that must violate immutability on purpose.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
