"""
ledger_batch -- Timer-driven processing of due recurring schedules and
scheduled auto-reversals.

Provides the due-schedule processor (one organization, one session, per-item
SAVEPOINT isolation) and an in-process polling scheduler that runs it for
every organization on a fixed interval.

Architecture:
    ledger_batch/ is a top-level package.  Nothing in ledger_kernel/
    imports from ledger_batch.

Invariants:
    - One item's failure never rolls back its siblings.
    - All timestamps come from the injected Clock.
    - Dry runs persist nothing.
    - Each organization is processed in its own session and transaction.
"""

from ledger_batch.domain.types import OrganizationRun, ProcessingKind, TickResult
from ledger_batch.services.due_processor import DueScheduleProcessor
from ledger_batch.services.scheduler import DueProcessingScheduler

__all__ = [
    "DueProcessingScheduler",
    "DueScheduleProcessor",
    "OrganizationRun",
    "ProcessingKind",
    "TickResult",
]
