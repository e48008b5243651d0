"""
DueScheduleProcessor -- SAVEPOINT-per-item processing of due work for one
organization.

Contract:
    ``process_due_schedules`` generates the occurrence at the cursor of every
    ACTIVE schedule due on ``for_date``; ``process_auto_reversals`` reverses
    every entry whose auto-reverse date has arrived.  Both return a
    ProcessingSummary and never raise for a single item.

Architecture: ledger_batch/services.  Drives RecurringScheduleService and
    ReversalService from ledger_kernel.

Invariants enforced:
    - One SAVEPOINT per schedule; a failure is reported, siblings proceed.
    - One occurrence per schedule per pass; a schedule further behind
      catches up on the following passes.
    - Dry runs compute the intended entry dates and persist nothing.
    - All dates from the injected Clock.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OrgContext
from ledger_kernel.domain.dtos import ProcessingItemResult, ProcessingSummary
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.recurring import ExecutionType, RecurringSchedule
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.recurring_service import RecurringScheduleService
from ledger_kernel.services.reversal_service import ReversalService

logger = get_logger("batch.due_processor")


class DueScheduleProcessor:
    """Processes due schedules and auto-reversals for one organization.

    Non-goals:
        - Does NOT call ``session.commit()``; the scheduler owns the boundary.
        - Does NOT loop over organizations.
    """

    def __init__(
        self,
        session: Session,
        ctx: OrgContext,
        *,
        clock: Clock | None = None,
        account_registry: AccountRegistry | None = None,
        **kwargs,
    ):
        self._session = session
        self._ctx = ctx
        self._clock = clock or SystemClock()
        self._recurring = RecurringScheduleService(
            session, ctx, clock=self._clock, account_registry=account_registry, **kwargs
        )
        self._reversals = ReversalService(
            session, ctx, clock=self._clock, account_registry=account_registry, **kwargs
        )

    @property
    def recurring(self) -> RecurringScheduleService:
        return self._recurring

    @property
    def reversals(self) -> ReversalService:
        return self._reversals

    def process_due_schedules(
        self,
        for_date: date | None = None,
        dry_run: bool = False,
    ) -> ProcessingSummary:
        for_date = for_date or self._clock.today()
        due = self._recurring.list_due_schedules(for_date)
        logger.info(
            "due_schedules_started",
            extra={
                "organization_id": str(self._ctx.organization_id),
                "for_date": for_date,
                "due_count": len(due),
                "dry_run": dry_run,
            },
        )

        results: list[ProcessingItemResult] = []
        for schedule in due:
            with LogContext.bind(schedule_id=str(schedule.id)):
                if dry_run:
                    results.append(self._preview_item(schedule))
                else:
                    results.append(self._process_item(schedule))

        summary = ProcessingSummary.from_results(results, dry_run)
        logger.info(
            "due_schedules_completed",
            extra={
                "processed": summary.processed,
                "successful": summary.successful,
                "failed": summary.failed,
                "dry_run": dry_run,
            },
        )
        return summary

    def process_auto_reversals(
        self,
        for_date: date | None = None,
        dry_run: bool = False,
    ) -> ProcessingSummary:
        return self._reversals.process_auto_reversals(for_date=for_date, dry_run=dry_run)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _preview_item(self, schedule: RecurringSchedule) -> ProcessingItemResult:
        return ProcessingItemResult(
            item_id=schedule.id,
            success=True,
            label=schedule.name,
            target_date=self._recurring.business_date(schedule, schedule.next_run_date),
        )

    def _process_item(self, schedule: RecurringSchedule) -> ProcessingItemResult:
        schedule_id, name, occurrence = schedule.id, schedule.name, schedule.next_run_date
        savepoint = self._session.begin_nested()
        try:
            result = self._recurring.generate_next(schedule, ExecutionType.AUTOMATIC)
            savepoint.commit()
        except LedgerKernelError as exc:
            savepoint.rollback()
            logger.warning(
                "due_schedule_failed",
                extra={"error_code": exc.code, "occurrence_date": occurrence},
            )
            return ProcessingItemResult(
                item_id=schedule_id,
                success=False,
                label=name,
                target_date=occurrence,
                error=str(exc),
                error_code=exc.code,
            )
        except Exception as exc:
            savepoint.rollback()
            logger.exception("due_schedule_failed", extra={"occurrence_date": occurrence})
            return ProcessingItemResult(
                item_id=schedule_id,
                success=False,
                label=name,
                target_date=occurrence,
                error=str(exc),
                error_code="UNHANDLED_EXCEPTION",
            )

        return ProcessingItemResult(
            item_id=schedule_id,
            success=result.success,
            label=name,
            target_date=result.entry_date,
            journal_entry_id=result.journal_entry_id,
            entry_number=result.entry_number,
            error=result.error,
            error_code=result.error_code,
        )
