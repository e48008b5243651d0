"""
DueProcessingScheduler -- In-process polling scheduler for due work.

Contract:
    On every tick, finds the organizations with due recurring schedules or
    due auto-reversals and runs DueScheduleProcessor for each one in its own
    session: commit on success, rollback on failure.

Architecture: ledger_batch/services.  Uses ledger_batch.services.due_processor
    for the per-organization work.

Invariants enforced:
    - All dates from the injected Clock.
    - One organization's failure never affects another's.
    - Graceful shutdown: the stop signal is checked between organizations.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OrgContext
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, ReversalType
from ledger_kernel.models.recurring import RecurringSchedule, ScheduleStatus

from ledger_batch.domain.types import OrganizationRun, ProcessingKind, TickResult
from ledger_batch.services.due_processor import DueScheduleProcessor

logger = get_logger("batch.scheduler")

ProcessorFactory = Callable[[Session, OrgContext, Clock], DueScheduleProcessor]


def _default_processor(session: Session, ctx: OrgContext, clock: Clock) -> DueScheduleProcessor:
    return DueScheduleProcessor(session, ctx, clock=clock)


def organizations_with_due_work(session: Session, for_date: date) -> list[UUID]:
    """Organizations owning a due ACTIVE schedule or a due auto-reversal."""
    schedules = select(RecurringSchedule.organization_id).where(
        RecurringSchedule.status == ScheduleStatus.ACTIVE,
        RecurringSchedule.next_run_date.is_not(None),
        RecurringSchedule.next_run_date <= for_date,
    )
    reversals = select(JournalEntry.organization_id).where(
        JournalEntry.status == JournalEntryStatus.POSTED,
        JournalEntry.reversal_type == ReversalType.AUTO_SCHEDULED,
        JournalEntry.auto_reverse_date.is_not(None),
        JournalEntry.auto_reverse_date <= for_date,
    )
    rows = session.execute(union(schedules, reversals)).scalars()
    return sorted(set(rows), key=str)


class DueProcessingScheduler:
    """Polling scheduler running due processing for every organization.

    Contract:
        - ``tick()`` processes all organizations with due work.
        - ``start()`` / ``stop()`` for background thread operation.
        - ``kinds`` limits each tick to some of the passes; default is both.

    Non-goals:
        - NOT a distributed scheduler (no leader election); the execution
          idempotency key makes a concurrent second instance harmless.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        processor_factory: ProcessorFactory | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        tick_interval_seconds: int = 300,
        organization_ids: Iterable[UUID] | None = None,
        kinds: Iterable[ProcessingKind] | None = None,
    ):
        self._session_factory = session_factory
        self._processor_factory = processor_factory or _default_processor
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._tick_interval = tick_interval_seconds
        self._organization_ids = tuple(organization_ids) if organization_ids is not None else None
        self._kinds = frozenset(kinds) if kinds is not None else frozenset(ProcessingKind)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, for_date: date | None = None) -> TickResult:
        """Process due work once (public for testing)."""
        started_at = self._clock.now()
        for_date = for_date or self._clock.today()

        runs: list[OrganizationRun] = []
        for organization_id in self._organizations(for_date):
            if self._stop_event.is_set():
                break
            runs.append(self._run_organization(organization_id, for_date))

        result = TickResult(
            started_at=started_at,
            completed_at=self._clock.now(),
            runs=tuple(runs),
        )
        logger.info(
            "scheduler_tick_completed",
            extra={
                "for_date": for_date,
                "organizations": result.organizations,
                "processed": result.processed,
            },
        )
        return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="due-processing-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current organization to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _organizations(self, for_date: date) -> list[UUID]:
        if self._organization_ids is not None:
            return list(self._organization_ids)
        session = self._session_factory()
        try:
            return organizations_with_due_work(session, for_date)
        finally:
            session.close()

    def _run_organization(self, organization_id: UUID, for_date: date) -> OrganizationRun:
        ctx = OrgContext(organization_id=organization_id, actor_id=self._actor_id)
        session = self._session_factory()
        with LogContext.bind(**ctx.log_fields()):
            try:
                processor = self._processor_factory(session, ctx, self._clock)
                schedules = reversals = None
                if ProcessingKind.DUE_SCHEDULES in self._kinds:
                    schedules = processor.process_due_schedules(for_date=for_date)
                if ProcessingKind.AUTO_REVERSALS in self._kinds:
                    reversals = processor.process_auto_reversals(for_date=for_date)
                session.commit()
                return OrganizationRun(
                    organization_id=organization_id,
                    for_date=for_date,
                    due_schedules=schedules,
                    auto_reversals=reversals,
                )
            except Exception as exc:
                session.rollback()
                logger.exception("organization_processing_failed")
                return OrganizationRun(
                    organization_id=organization_id,
                    for_date=for_date,
                    error=str(exc),
                )
            finally:
                session.close()
