"""
RecurringScheduleService -- periodic entry generation from templates.

Responsibility:
    Schedule CRUD and lifecycle (pause / resume / delete), generation of the
    next due occurrence through EntryTemplateService and JournalEntryService,
    missed-occurrence backfill, previews, and the execution log.

Architecture position:
    Kernel > Services -- imperative shell.  Calendar arithmetic lives in
    domain/recurrence.py; DueScheduleProcessor drives generate_next().

Invariants enforced:
    - next_run_date is the nominal cursor; the entry is dated on the
      weekend/holiday-adjusted business date.
    - Success: SUCCESS execution keyed "<schedule_id>:<occurrence_date>",
      cursor advanced, occurrences_count + 1, COMPLETED when the end date
      or max_occurrences is reached.
    - Failure: FAILED execution, cursor unchanged, retry_count + 1, status
      ERROR once retry_count reaches max_retries.
    - Entry creation runs in a SAVEPOINT so a failure leaves only the
      FAILED execution and the schedule counters behind.

Failure modes:
    - ScheduleNotFoundError, ScheduleStateError, ScheduleValidationError,
      DuplicateExecutionError (occurrence already generated).
    - Generation failures are returned as GenerationResult(success=False),
      never raised, so the FAILED execution row survives the caller's commit.
"""

import time
from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import GenerationResult, PreviewOccurrence
from ledger_kernel.domain.recurrence import (
    EndOfMonthHandling,
    Frequency,
    Recurrence,
    WeekendAdjustment,
    build_recurrence,
    occurrences_between,
    resolve_business_date,
)
from ledger_kernel.exceptions import (
    DuplicateExecutionError,
    LedgerKernelError,
    ScheduleNotFoundError,
    ScheduleStateError,
    ScheduleValidationError,
    TemplateStateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.recurring import (
    ExecutionStatus,
    ExecutionType,
    RecurringSchedule,
    ScheduleExecution,
    ScheduleStatus,
)
from ledger_kernel.models.template import TemplateStatus
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.holiday_service import HolidayCalendarService
from ledger_kernel.services.template_service import EntryTemplateService

logger = get_logger("services.recurring")

_RESOURCE = "recurring_schedule"

# Days around an occurrence searched for holidays
_HOLIDAY_WINDOW = timedelta(days=31)

_RECURRENCE_FIELDS = frozenset(
    {
        "frequency",
        "frequency_interval",
        "day_of_week",
        "day_of_month",
        "month_of_year",
        "end_of_month_handling",
    }
)

_UPDATABLE_FIELDS = _RECURRENCE_FIELDS | frozenset(
    {
        "name",
        "description",
        "end_date",
        "max_occurrences",
        "auto_post",
        "default_variable_values",
        "skip_weekends",
        "skip_holidays",
        "weekend_adjustment",
        "max_retries",
    }
)

_ENUM_FIELDS = {
    "frequency": Frequency,
    "end_of_month_handling": EndOfMonthHandling,
    "weekend_adjustment": WeekendAdjustment,
}


def idempotency_key(schedule_id: UUID, occurrence_date: date) -> str:
    return f"{schedule_id}:{occurrence_date.isoformat()}"


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ScheduleValidationError(f"unknown {enum_cls.__name__} {value!r}") from exc


def schedule_recurrence(schedule: RecurringSchedule) -> Recurrence:
    """Recurrence variant for a schedule's frequency descriptor."""
    return build_recurrence(
        schedule.frequency,
        anchor=schedule.start_date,
        interval=schedule.frequency_interval,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        month_of_year=schedule.month_of_year,
        end_of_month=schedule.end_of_month_handling,
    )


class RecurringScheduleService(BaseService[RecurringSchedule]):
    """
    Recurring schedule engine.

    Non-goals:
        - Does NOT run on a timer; see ledger_batch.DueProcessingScheduler.
        - Does NOT commit.
    """

    def __init__(self, session, ctx, *, account_registry: AccountRegistry | None = None, **kwargs):
        super().__init__(session, ctx, **kwargs)
        self._templates = EntryTemplateService(
            session,
            ctx,
            account_registry=account_registry,
            **self._collaborator_kwargs(),
        )
        self._holidays = HolidayCalendarService(session, ctx, **self._collaborator_kwargs())

    @property
    def templates(self) -> EntryTemplateService:
        return self._templates

    # =========================================================================
    # Calendar
    # =========================================================================

    def calculate_next_run_date(
        self,
        schedule: RecurringSchedule,
        current: date | None = None,
    ) -> date | None:
        """
        Nominal occurrence following ``current`` (default: the cursor).

        Returns None when the schedule has no further occurrence.
        """
        current = current or schedule.next_run_date
        if current is None:
            return None
        following = schedule_recurrence(schedule).next_occurrence(current)
        if schedule.end_date is not None and following > schedule.end_date:
            return None
        return following

    def business_date(self, schedule: RecurringSchedule, nominal: date) -> date:
        holidays: set[date] = set()
        if schedule.skip_holidays:
            holidays = self._holidays.holiday_dates(nominal - _HOLIDAY_WINDOW, nominal + _HOLIDAY_WINDOW)
        return resolve_business_date(
            nominal,
            skip_weekends=schedule.skip_weekends,
            skip_holidays=schedule.skip_holidays,
            policy=schedule.weekend_adjustment,
            holidays=holidays,
            max_attempts=self._settings.holiday_adjustment_attempts,
        )

    def _check_range(self, schedule: RecurringSchedule) -> None:
        if schedule.end_date is not None and schedule.end_date < schedule.start_date:
            raise ScheduleValidationError("end_date must not be before start_date")
        if schedule.max_occurrences is not None and schedule.max_occurrences < 1:
            raise ScheduleValidationError("max_occurrences must be at least 1")
        if schedule.max_retries < 0:
            raise ScheduleValidationError("max_retries must not be negative")
        try:
            schedule_recurrence(schedule)
        except ValueError as exc:
            raise ScheduleValidationError(str(exc)) from exc

    def _is_exhausted(self, schedule: RecurringSchedule, upcoming: date | None) -> bool:
        if upcoming is None:
            return True
        if schedule.end_date is not None and upcoming > schedule.end_date:
            return True
        return (
            schedule.max_occurrences is not None
            and schedule.occurrences_count >= schedule.max_occurrences
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_schedule(
        self,
        name: str,
        template_id: UUID,
        frequency: Frequency | str,
        start_date: date,
        *,
        frequency_interval: int = 1,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        month_of_year: int | None = None,
        end_of_month_handling: EndOfMonthHandling | str = EndOfMonthHandling.LAST_DAY,
        skip_weekends: bool = True,
        skip_holidays: bool = False,
        weekend_adjustment: WeekendAdjustment | str = WeekendAdjustment.PREVIOUS,
        end_date: date | None = None,
        max_occurrences: int | None = None,
        auto_post: bool = False,
        default_variable_values: Mapping[str, Any] | None = None,
        max_retries: int | None = None,
        description: str | None = None,
    ) -> RecurringSchedule:
        """
        Create an ACTIVE schedule bound to an ACTIVE template.

        The cursor starts at the first nominal occurrence on or after
        ``start_date``.
        """
        template = self._templates.get_template(template_id)
        if template.status != TemplateStatus.ACTIVE:
            raise TemplateStateError(str(template.id), template.status.value, "schedule")

        schedule = RecurringSchedule(
            organization_id=self.organization_id,
            name=name,
            description=description,
            template_id=template.id,
            frequency=_coerce(Frequency, frequency),
            frequency_interval=frequency_interval,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            end_of_month_handling=_coerce(EndOfMonthHandling, end_of_month_handling),
            skip_weekends=skip_weekends,
            skip_holidays=skip_holidays,
            weekend_adjustment=_coerce(WeekendAdjustment, weekend_adjustment),
            start_date=start_date,
            end_date=end_date,
            max_occurrences=max_occurrences,
            auto_post=auto_post,
            default_variable_values=dict(default_variable_values) if default_variable_values else None,
            status=ScheduleStatus.ACTIVE,
            occurrences_count=0,
            retry_count=0,
            max_retries=self._settings.default_max_retries if max_retries is None else max_retries,
            created_by_id=self.actor_id,
        )
        self._check_range(schedule)

        first = schedule_recurrence(schedule).first_occurrence(start_date)
        if schedule.end_date is not None and first > schedule.end_date:
            raise ScheduleValidationError("no occurrence falls between start_date and end_date")
        schedule.next_run_date = first

        self.session.add(schedule)
        self.session.flush()

        logger.info(
            "schedule_created",
            extra={
                "schedule_id": str(schedule.id),
                "frequency": schedule.frequency.value,
                "next_run_date": first,
            },
        )
        self._record_audit(
            AuditAction.SCHEDULE_CREATED,
            _RESOURCE,
            schedule.id,
            name=name,
            template_id=template.id,
            frequency=schedule.frequency,
            next_run_date=first,
        )
        self._invalidate_cache("recurring_schedules")
        return schedule

    def _get(self, schedule_id: UUID, for_update: bool = False) -> RecurringSchedule:
        query = select(RecurringSchedule).where(
            RecurringSchedule.id == schedule_id,
            RecurringSchedule.organization_id == self.organization_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        schedule = self.session.execute(query).scalar_one_or_none()
        if schedule is None:
            raise ScheduleNotFoundError(str(schedule_id))
        return schedule

    def get_schedule(self, schedule_id: UUID) -> RecurringSchedule:
        return self._get(schedule_id)

    def list_schedules(
        self,
        status: ScheduleStatus | str | None = None,
        template_id: UUID | None = None,
    ) -> list[RecurringSchedule]:
        query = select(RecurringSchedule).where(
            RecurringSchedule.organization_id == self.organization_id
        )
        if status is not None:
            query = query.where(RecurringSchedule.status == ScheduleStatus(status))
        if template_id is not None:
            query = query.where(RecurringSchedule.template_id == template_id)
        return list(self.session.execute(query.order_by(RecurringSchedule.name)).scalars())

    def list_due_schedules(self, for_date: date) -> list[RecurringSchedule]:
        """ACTIVE schedules whose cursor is on or before ``for_date``."""
        return list(
            self.session.execute(
                select(RecurringSchedule)
                .where(
                    RecurringSchedule.organization_id == self.organization_id,
                    RecurringSchedule.status == ScheduleStatus.ACTIVE,
                    RecurringSchedule.next_run_date.is_not(None),
                    RecurringSchedule.next_run_date <= for_date,
                )
                .order_by(RecurringSchedule.next_run_date, RecurringSchedule.name)
            ).scalars()
        )

    def update_schedule(self, schedule_id: UUID, **fields: Any) -> RecurringSchedule:
        """
        Update schedule settings.

        Changing the frequency descriptor re-aligns the cursor to the first
        new occurrence on or after the current cursor.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"update_schedule() got unexpected fields: {sorted(unknown)}")

        schedule = self._get(schedule_id, for_update=True)
        if schedule.status == ScheduleStatus.COMPLETED:
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "update")

        for name, value in fields.items():
            if name in _ENUM_FIELDS and value is not None:
                value = _coerce(_ENUM_FIELDS[name], value)
            setattr(schedule, name, value)
        self._check_range(schedule)

        if _RECURRENCE_FIELDS & set(fields) and schedule.next_run_date is not None:
            schedule.next_run_date = schedule_recurrence(schedule).first_occurrence(
                schedule.next_run_date
            )
        if self._is_exhausted(schedule, schedule.next_run_date):
            raise ScheduleValidationError("update leaves the schedule without further occurrences")

        schedule.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "schedule_updated",
            extra={"schedule_id": str(schedule.id), "fields": sorted(fields)},
        )
        self._record_audit(
            AuditAction.SCHEDULE_UPDATED,
            _RESOURCE,
            schedule.id,
            fields=sorted(fields),
            next_run_date=schedule.next_run_date,
        )
        self._invalidate_cache("recurring_schedules")
        return schedule

    def pause_schedule(self, schedule_id: UUID) -> RecurringSchedule:
        schedule = self._get(schedule_id, for_update=True)
        if schedule.status != ScheduleStatus.ACTIVE:
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "pause")

        schedule.status = ScheduleStatus.PAUSED
        schedule.paused_at = self._clock.now()
        schedule.paused_by_id = self.actor_id
        schedule.updated_by_id = self.actor_id
        self.session.flush()

        logger.info("schedule_paused", extra={"schedule_id": str(schedule.id)})
        self._record_audit(AuditAction.SCHEDULE_PAUSED, _RESOURCE, schedule.id)
        self._invalidate_cache("recurring_schedules")
        return schedule

    def resume_schedule(
        self,
        schedule_id: UUID,
        generate_missed: bool = False,
    ) -> RecurringSchedule:
        """
        Resume a PAUSED (or ERROR) schedule.

        With ``generate_missed`` the occurrences due up to today are
        generated as MISSED executions; otherwise the cursor skips ahead to
        the first occurrence on or after today.
        """
        schedule = self._get(schedule_id, for_update=True)
        if schedule.status not in (ScheduleStatus.PAUSED, ScheduleStatus.ERROR):
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "resume")

        previous_status = schedule.status
        schedule.status = ScheduleStatus.ACTIVE
        schedule.paused_at = None
        schedule.paused_by_id = None
        schedule.retry_count = 0
        schedule.error_message = None
        schedule.updated_by_id = self.actor_id

        today = self._clock.today()
        skipped = 0
        if not generate_missed and schedule.next_run_date is not None:
            recurrence = schedule_recurrence(schedule)
            while schedule.next_run_date < today:
                schedule.next_run_date = recurrence.next_occurrence(schedule.next_run_date)
                skipped += 1
            if self._is_exhausted(schedule, schedule.next_run_date):
                schedule.status = ScheduleStatus.COMPLETED
                schedule.next_run_date = None
        self.session.flush()

        logger.info(
            "schedule_resumed",
            extra={
                "schedule_id": str(schedule.id),
                "previous_status": previous_status.value,
                "generate_missed": generate_missed,
                "skipped_occurrences": skipped,
            },
        )
        self._record_audit(
            AuditAction.SCHEDULE_RESUMED,
            _RESOURCE,
            schedule.id,
            previous_status=previous_status,
            generate_missed=generate_missed,
            skipped_occurrences=skipped,
        )
        self._invalidate_cache("recurring_schedules")

        if generate_missed:
            self.batch_generate_missed(schedule.id, up_to=today)
        return schedule

    def delete_schedule(self, schedule_id: UUID) -> None:
        """Delete a schedule that has never fired.  Pause it otherwise."""
        schedule = self._get(schedule_id, for_update=True)
        has_history = self.session.execute(
            select(ScheduleExecution.id).where(ScheduleExecution.schedule_id == schedule.id).limit(1)
        ).first()
        if has_history is not None:
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "delete (has executions)")

        name = schedule.name
        self.session.delete(schedule)
        self.session.flush()

        logger.info("schedule_deleted", extra={"schedule_id": str(schedule_id)})
        self._record_audit(AuditAction.SCHEDULE_DELETED, _RESOURCE, schedule_id, name=name)
        self._invalidate_cache("recurring_schedules")

    # =========================================================================
    # Generation
    # =========================================================================

    def manual_generate(
        self,
        schedule_id: UUID,
        variables: Mapping[str, Any] | None = None,
    ) -> GenerationResult:
        """Generate the occurrence at the cursor now, regardless of its date."""
        schedule = self._get(schedule_id, for_update=True)
        if schedule.status not in (ScheduleStatus.ACTIVE, ScheduleStatus.PAUSED):
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "generate")
        return self.generate_next(schedule, ExecutionType.MANUAL, variables)

    def batch_generate_missed(
        self,
        schedule_id: UUID,
        up_to: date | None = None,
    ) -> list[GenerationResult]:
        """
        Generate every occurrence with a cursor on or before ``up_to``.

        Stops at the first failure (the cursor does not move past it) and
        after ``max_missed_backfill`` generations.
        """
        up_to = up_to or self._clock.today()
        schedule = self._get(schedule_id, for_update=True)
        if schedule.status != ScheduleStatus.ACTIVE:
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "generate missed")

        results: list[GenerationResult] = []
        while (
            schedule.status == ScheduleStatus.ACTIVE
            and schedule.next_run_date is not None
            and schedule.next_run_date <= up_to
            and len(results) < self._settings.max_missed_backfill
        ):
            result = self.generate_next(schedule, ExecutionType.MISSED)
            results.append(result)
            if not result.success:
                break

        logger.info(
            "missed_occurrences_generated",
            extra={
                "schedule_id": str(schedule.id),
                "up_to": up_to,
                "generated": sum(1 for r in results if r.success),
                "failed": sum(1 for r in results if not r.success),
            },
        )
        return results

    def generate_next(
        self,
        schedule: RecurringSchedule,
        execution_type: ExecutionType,
        variables: Mapping[str, Any] | None = None,
    ) -> GenerationResult:
        """
        Materialize the occurrence at the schedule's cursor.

        Raises:
            ScheduleStateError: The schedule has no cursor.
            DuplicateExecutionError: The occurrence was already generated.
        """
        occurrence = schedule.next_run_date
        if occurrence is None:
            raise ScheduleStateError(str(schedule.id), schedule.status.value, "generate")

        key = idempotency_key(schedule.id, occurrence)
        already = self.session.execute(
            select(ScheduleExecution.id).where(ScheduleExecution.idempotency_key == key)
        ).first()
        if already is not None:
            raise DuplicateExecutionError(str(schedule.id), occurrence.isoformat())

        with LogContext.bind(schedule_id=str(schedule.id)):
            entry_date = self.business_date(schedule, occurrence)
            merged = dict(schedule.default_variable_values or {})
            merged.update(variables or {})

            started_at = self._clock.now()
            started = time.monotonic()
            savepoint = self.session.begin_nested()
            try:
                entry = self._templates.generate_entry(
                    schedule.template_id,
                    entry_date,
                    merged,
                    reference=schedule.name,
                    recurring_schedule_id=schedule.id,
                )
                if schedule.auto_post:
                    self._templates.journal.post_entry(entry.id, bypass_approval=True)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                return self._record_failure(
                    schedule, execution_type, occurrence, entry_date, exc, started_at, started
                )

            return self._record_success(
                schedule, execution_type, occurrence, entry_date, entry, key, started_at, started
            )

    def _record_success(
        self,
        schedule: RecurringSchedule,
        execution_type: ExecutionType,
        occurrence: date,
        entry_date: date,
        entry: JournalEntry,
        key: str,
        started_at,
        started: float,
    ) -> GenerationResult:
        execution = ScheduleExecution(
            organization_id=self.organization_id,
            schedule_id=schedule.id,
            execution_type=execution_type,
            status=ExecutionStatus.SUCCESS,
            occurrence_date=occurrence,
            entry_date=entry_date,
            journal_entry_id=entry.id,
            attempt=schedule.retry_count + 1,
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=int((time.monotonic() - started) * 1000),
            idempotency_key=key,
            created_by_id=self.actor_id,
        )
        self.session.add(execution)

        schedule.last_run_date = occurrence
        schedule.occurrences_count += 1
        schedule.retry_count = 0
        schedule.error_message = None
        upcoming = schedule_recurrence(schedule).next_occurrence(occurrence)
        if self._is_exhausted(schedule, upcoming):
            schedule.status = ScheduleStatus.COMPLETED
            schedule.next_run_date = None
        else:
            schedule.next_run_date = upcoming
        schedule.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "schedule_executed",
            extra={
                "occurrence_date": occurrence,
                "entry_date": entry_date,
                "entry_number": entry.entry_number,
                "execution_type": execution_type.value,
                "next_run_date": schedule.next_run_date,
                "schedule_status": schedule.status.value,
            },
        )
        self._record_audit(
            AuditAction.SCHEDULE_EXECUTED,
            _RESOURCE,
            schedule.id,
            occurrence_date=occurrence,
            journal_entry_id=entry.id,
            entry_number=entry.entry_number,
            execution_type=execution_type,
        )
        self._invalidate_cache("recurring_schedules", "journal_entries")
        return GenerationResult(
            schedule_id=schedule.id,
            success=True,
            occurrence_date=occurrence,
            entry_date=entry_date,
            execution_id=execution.id,
            journal_entry_id=entry.id,
            entry_number=entry.entry_number,
        )

    def _record_failure(
        self,
        schedule: RecurringSchedule,
        execution_type: ExecutionType,
        occurrence: date,
        entry_date: date,
        exc: Exception,
        started_at,
        started: float,
    ) -> GenerationResult:
        if isinstance(exc, LedgerKernelError):
            error_code = exc.code
            logger.warning(
                "schedule_execution_failed",
                extra={"occurrence_date": occurrence, "error_code": error_code},
            )
        else:
            error_code = "UNHANDLED_EXCEPTION"
            logger.error(
                "schedule_execution_failed",
                extra={"occurrence_date": occurrence, "error_code": error_code},
                exc_info=True,
            )
        message = str(exc)[:2000]

        execution = ScheduleExecution(
            organization_id=self.organization_id,
            schedule_id=schedule.id,
            execution_type=execution_type,
            status=ExecutionStatus.FAILED,
            occurrence_date=occurrence,
            entry_date=entry_date,
            error_message=message,
            error_code=error_code,
            attempt=schedule.retry_count + 1,
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=int((time.monotonic() - started) * 1000),
            created_by_id=self.actor_id,
        )
        self.session.add(execution)

        schedule.retry_count += 1
        schedule.last_error_at = self._clock.now()
        if schedule.retry_count >= schedule.max_retries:
            schedule.status = ScheduleStatus.ERROR
            schedule.error_message = message
            logger.error(
                "schedule_retries_exhausted",
                extra={"retry_count": schedule.retry_count, "max_retries": schedule.max_retries},
            )
        schedule.updated_by_id = self.actor_id
        self.session.flush()

        self._record_audit(
            AuditAction.SCHEDULE_EXECUTION_FAILED,
            _RESOURCE,
            schedule.id,
            occurrence_date=occurrence,
            error_code=error_code,
            retry_count=schedule.retry_count,
        )
        self._invalidate_cache("recurring_schedules")
        return GenerationResult(
            schedule_id=schedule.id,
            success=False,
            occurrence_date=occurrence,
            entry_date=entry_date,
            execution_id=execution.id,
            error=message,
            error_code=error_code,
        )

    # =========================================================================
    # Read-only
    # =========================================================================

    def preview_upcoming(self, schedule_id: UUID, count: int = 5) -> list[PreviewOccurrence]:
        """
        Next ``count`` occurrences with business dates and rendered lines.

        Persists nothing.  Lines are empty when the template cannot be
        rendered with the schedule's default variables.
        """
        schedule = self._get(schedule_id)
        if schedule.next_run_date is None:
            return []

        remaining = None
        if schedule.max_occurrences is not None:
            remaining = max(schedule.max_occurrences - schedule.occurrences_count, 0)
        nominal_dates = occurrences_between(
            schedule_recurrence(schedule),
            schedule.next_run_date,
            limit=count,
            end_date=schedule.end_date,
            remaining=remaining,
            cap=self._settings.max_generated_occurrences,
        )

        template = self._templates.get_template(schedule.template_id)
        try:
            lines = tuple(
                self._templates.render_lines(template, schedule.default_variable_values or {})
            )
        except LedgerKernelError:
            logger.debug("schedule_preview_unrendered", extra={"schedule_id": str(schedule.id)})
            lines = ()
        total = sum((line.debit_amount for line in lines), ZERO) if lines else None

        return [
            PreviewOccurrence(
                occurrence_date=nominal,
                entry_date=self.business_date(schedule, nominal),
                total_amount=total,
                lines=lines,
            )
            for nominal in nominal_dates
        ]

    def get_execution_history(
        self,
        schedule_id: UUID,
        limit: int = 50,
        status: ExecutionStatus | str | None = None,
    ) -> list[ScheduleExecution]:
        schedule = self._get(schedule_id)
        query = select(ScheduleExecution).where(ScheduleExecution.schedule_id == schedule.id)
        if status is not None:
            query = query.where(ScheduleExecution.status == ExecutionStatus(status))
        query = query.order_by(
            ScheduleExecution.occurrence_date.desc(),
            ScheduleExecution.started_at.desc(),
        ).limit(limit)
        return list(self.session.execute(query).scalars())
