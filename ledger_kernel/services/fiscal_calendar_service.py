"""
FiscalCalendarService -- fiscal year and period lifecycle.

Responsibility:
    Owns the FiscalYear and FiscalPeriod state machines and answers "is
    this date postable" queries for the posting engine.

Architecture position:
    Kernel > Services -- imperative shell.  Called directly by the API
    layer for lifecycle operations and by JournalEntryService /
    ReversalService for period resolution.

State machines:
    FiscalYear    draft -> open -> closed -> locked   (no year-level reopen)
    FiscalPeriod  open -> soft_closed -> closed -> locked
                  closed | soft_closed -> open        (reopen, year must be open)

Invariants enforced:
    - Year code unique per organization; no two years of an organization
      overlap; end_date strictly after start_date.
    - Generated periods cover the year contiguously, at most 12, the last
      one absorbing any remainder.
    - At most one current year: the previous holder is cleared and flushed
      before the new one is set, in the same transaction.
    - A year is deleted only while draft and only when no journal entry
      references it.
    - Every status transition is audited with actor, timestamp and reason.

Failure modes:
    - FiscalYearNotFoundError / PeriodNotFoundError / NoPeriodForDateError
    - DuplicateFiscalYearCodeError, InvalidDateRangeError,
      FiscalYearOverlapError (validation)
    - FiscalYearStateError, FiscalYearHasOpenPeriodsError,
      FiscalYearNotEmptyError, PeriodStateError (invalid state)
"""

import calendar
from collections import Counter
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import FiscalYearStatistics, PeriodInfo
from ledger_kernel.exceptions import (
    DuplicateFiscalYearCodeError,
    FiscalYearHasOpenPeriodsError,
    FiscalYearNotEmptyError,
    FiscalYearNotFoundError,
    FiscalYearOverlapError,
    FiscalYearStateError,
    InvalidDateRangeError,
    NoPeriodForDateError,
    PeriodNotFoundError,
    PeriodStateError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal import (
    FiscalPeriod,
    FiscalYear,
    FiscalYearStatus,
    PeriodStatus,
)
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.services.base import BaseService

logger = get_logger("services.fiscal_calendar")

_RESOURCE_YEAR = "fiscal_year"
_RESOURCE_PERIOD = "fiscal_period"


def add_months(day: date, months: int) -> date:
    """Same day ``months`` later, clamped to the target month's last day."""
    index = day.year * 12 + day.month - 1 + months
    year, month0 = divmod(index, 12)
    last_day = calendar.monthrange(year, month0 + 1)[1]
    return date(year, month0 + 1, min(day.day, last_day))


def to_period_info(period: FiscalPeriod) -> PeriodInfo:
    return PeriodInfo(
        period_id=period.id,
        fiscal_year_id=period.fiscal_year_id,
        name=period.name,
        period_number=period.period_number,
        status=period.status.value,
        start_date=period.start_date,
        end_date=period.end_date,
    )


class FiscalCalendarService(BaseService[FiscalYear]):
    """
    Service for fiscal year and period lifecycle.

    Contract:
        Lifecycle methods lock the target row, check the transition, flush,
        audit, and return the updated ORM row.  Query methods never lock.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
        - Does NOT run closing entries (year-end close bookkeeping).
    """

    # =========================================================================
    # Fiscal years
    # =========================================================================

    def create_fiscal_year(
        self,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        generate_periods: bool = True,
    ) -> FiscalYear:
        """
        Create a draft fiscal year, optionally with monthly periods.

        Raises:
            DuplicateFiscalYearCodeError: Code already used in the organization.
            InvalidDateRangeError: end_date is not after start_date.
            FiscalYearOverlapError: Range overlaps another year.
        """
        if end_date <= start_date:
            raise InvalidDateRangeError(str(start_date), str(end_date))

        existing = self.session.execute(
            select(FiscalYear.id).where(
                FiscalYear.organization_id == self.organization_id,
                FiscalYear.code == code,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateFiscalYearCodeError(code)

        self._validate_no_overlap(start_date, end_date)

        fiscal_year = FiscalYear(
            organization_id=self.organization_id,
            code=code,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=FiscalYearStatus.DRAFT,
            is_current=False,
            created_by_id=self.actor_id,
        )
        self.session.add(fiscal_year)

        if generate_periods:
            for period in self._build_periods(fiscal_year):
                fiscal_year.periods.append(period)

        self.session.flush()

        logger.info(
            "fiscal_year_created",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "code": code,
                "start_date": str(start_date),
                "end_date": str(end_date),
                "period_count": len(fiscal_year.periods),
            },
        )
        self._record_audit(
            AuditAction.FISCAL_YEAR_CREATED,
            _RESOURCE_YEAR,
            fiscal_year.id,
            code=code,
            start_date=start_date,
            end_date=end_date,
            period_count=len(fiscal_year.periods),
        )
        self._invalidate_cache("fiscal_years")
        return fiscal_year

    def _build_periods(self, fiscal_year: FiscalYear) -> list[FiscalPeriod]:
        max_periods = self._settings.max_periods_per_year
        month_names = self._settings.month_names
        periods: list[FiscalPeriod] = []
        number = 1
        period_start = fiscal_year.start_date
        while period_start <= fiscal_year.end_date and number <= max_periods:
            next_start = add_months(fiscal_year.start_date, number)
            if number == max_periods or next_start > fiscal_year.end_date:
                period_end = fiscal_year.end_date
            else:
                period_end = next_start - timedelta(days=1)
            periods.append(
                FiscalPeriod(
                    organization_id=self.organization_id,
                    period_number=number,
                    name=f"{month_names[period_start.month - 1]} {period_start.year}",
                    start_date=period_start,
                    end_date=period_end,
                    status=PeriodStatus.OPEN,
                    created_by_id=self.actor_id,
                )
            )
            period_start = period_end + timedelta(days=1)
            number += 1
        return periods

    def _validate_no_overlap(
        self,
        start_date: date,
        end_date: date,
        exclude_id: UUID | None = None,
    ) -> None:
        # Two ranges overlap iff start1 <= end2 AND start2 <= end1
        query = select(FiscalYear).where(
            FiscalYear.organization_id == self.organization_id,
            FiscalYear.start_date <= end_date,
            FiscalYear.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.where(FiscalYear.id != exclude_id)
        overlapping = self.session.execute(query.limit(1)).scalar_one_or_none()
        if overlapping is not None:
            raise FiscalYearOverlapError(str(start_date), str(end_date), overlapping.code)

    def _get_year(self, fiscal_year_id: UUID, for_update: bool = False) -> FiscalYear:
        query = select(FiscalYear).where(
            FiscalYear.id == fiscal_year_id,
            FiscalYear.organization_id == self.organization_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        fiscal_year = self.session.execute(query).scalar_one_or_none()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def get_fiscal_year(self, fiscal_year_id: UUID) -> FiscalYear:
        return self._get_year(fiscal_year_id)

    def list_fiscal_years(self, status: FiscalYearStatus | str | None = None) -> list[FiscalYear]:
        """Years of the organization, most recent first."""
        query = select(FiscalYear).where(FiscalYear.organization_id == self.organization_id)
        if status is not None:
            query = query.where(FiscalYear.status == FiscalYearStatus(status))
        return list(self.session.execute(query.order_by(FiscalYear.start_date.desc())).scalars())

    def get_current_fiscal_year(self) -> FiscalYear | None:
        return self.session.execute(
            select(FiscalYear).where(
                FiscalYear.organization_id == self.organization_id,
                FiscalYear.is_current.is_(True),
            )
        ).scalar_one_or_none()

    def update_fiscal_year(
        self,
        fiscal_year_id: UUID,
        *,
        name: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> FiscalYear:
        """
        Rename a year or, while it is draft, move its boundaries.

        Date changes do not regenerate periods.

        Raises:
            FiscalYearStateError: Locked year, or date change on a non-draft year.
        """
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)

        if fiscal_year.status == FiscalYearStatus.LOCKED:
            raise FiscalYearStateError(str(fiscal_year_id), fiscal_year.status.value, "update")

        changes: dict[str, object] = {}
        if start_date is not None or end_date is not None:
            if fiscal_year.status != FiscalYearStatus.DRAFT:
                raise FiscalYearStateError(
                    str(fiscal_year_id), fiscal_year.status.value, "change dates of"
                )
            new_start = start_date or fiscal_year.start_date
            new_end = end_date or fiscal_year.end_date
            if new_end <= new_start:
                raise InvalidDateRangeError(str(new_start), str(new_end))
            self._validate_no_overlap(new_start, new_end, exclude_id=fiscal_year.id)
            fiscal_year.start_date = new_start
            fiscal_year.end_date = new_end
            changes.update(start_date=new_start, end_date=new_end)

        if name is not None:
            fiscal_year.name = name
            changes["name"] = name

        fiscal_year.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "fiscal_year_updated",
            extra={"fiscal_year_id": str(fiscal_year.id), "fields": sorted(changes)},
        )
        self._record_audit(AuditAction.FISCAL_YEAR_UPDATED, _RESOURCE_YEAR, fiscal_year.id, **changes)
        self._invalidate_cache("fiscal_years")
        return fiscal_year

    def open_fiscal_year(self, fiscal_year_id: UUID) -> FiscalYear:
        """draft -> open."""
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)
        if fiscal_year.status != FiscalYearStatus.DRAFT:
            raise FiscalYearStateError(str(fiscal_year_id), fiscal_year.status.value, "open")

        fiscal_year.status = FiscalYearStatus.OPEN
        fiscal_year.opened_at = self._clock.now()
        fiscal_year.opened_by_id = self.actor_id
        fiscal_year.updated_by_id = self.actor_id
        self.session.flush()

        logger.info("fiscal_year_opened", extra={"fiscal_year_id": str(fiscal_year.id)})
        self._record_audit(
            AuditAction.FISCAL_YEAR_OPENED,
            _RESOURCE_YEAR,
            fiscal_year.id,
            previous_status=FiscalYearStatus.DRAFT,
            new_status=FiscalYearStatus.OPEN,
        )
        self._invalidate_cache("fiscal_years")
        return fiscal_year

    def close_fiscal_year(self, fiscal_year_id: UUID, force: bool = False) -> FiscalYear:
        """
        open -> closed.

        Without ``force`` the year must have no open or soft-closed period;
        with ``force`` those periods are closed first, in this transaction.
        """
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)
        if fiscal_year.status != FiscalYearStatus.OPEN:
            raise FiscalYearStateError(str(fiscal_year_id), fiscal_year.status.value, "close")

        now = self._clock.now()
        open_periods = [p for p in fiscal_year.periods if p.is_open]
        if open_periods and not force:
            raise FiscalYearHasOpenPeriodsError(str(fiscal_year_id), len(open_periods))

        for period in open_periods:
            period.status = PeriodStatus.CLOSED
            period.closed_at = now
            period.closed_by_id = self.actor_id
            period.updated_by_id = self.actor_id

        fiscal_year.status = FiscalYearStatus.CLOSED
        fiscal_year.closed_at = now
        fiscal_year.closed_by_id = self.actor_id
        fiscal_year.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "fiscal_year_closed",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "forced": force,
                "periods_closed": len(open_periods),
            },
        )
        self._record_audit(
            AuditAction.FISCAL_YEAR_CLOSED,
            _RESOURCE_YEAR,
            fiscal_year.id,
            previous_status=FiscalYearStatus.OPEN,
            new_status=FiscalYearStatus.CLOSED,
            forced=force,
            periods_closed=len(open_periods),
        )
        self._invalidate_cache("fiscal_years", "journal_entries")
        return fiscal_year

    def lock_fiscal_year(self, fiscal_year_id: UUID, reason: str | None = None) -> FiscalYear:
        """closed -> locked; every period of the year is locked with it."""
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)
        if fiscal_year.status != FiscalYearStatus.CLOSED:
            raise FiscalYearStateError(str(fiscal_year_id), fiscal_year.status.value, "lock")

        now = self._clock.now()
        for period in fiscal_year.periods:
            period.status = PeriodStatus.LOCKED
            period.locked_at = now
            period.locked_by_id = self.actor_id
            period.updated_by_id = self.actor_id

        fiscal_year.status = FiscalYearStatus.LOCKED
        fiscal_year.locked_at = now
        fiscal_year.locked_by_id = self.actor_id
        fiscal_year.lock_reason = reason
        fiscal_year.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "fiscal_year_locked",
            extra={"fiscal_year_id": str(fiscal_year.id), "reason": reason},
        )
        self._record_audit(
            AuditAction.FISCAL_YEAR_LOCKED,
            _RESOURCE_YEAR,
            fiscal_year.id,
            previous_status=FiscalYearStatus.CLOSED,
            new_status=FiscalYearStatus.LOCKED,
            reason=reason,
        )
        self._invalidate_cache("fiscal_years")
        return fiscal_year

    def set_current_fiscal_year(self, fiscal_year_id: UUID) -> FiscalYear:
        """
        Make an open year the organization's current year.

        The previous holder is cleared and flushed before the new flag is
        written so the partial unique index never sees two current rows.
        """
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)
        if fiscal_year.status != FiscalYearStatus.OPEN:
            raise FiscalYearStateError(
                str(fiscal_year_id), fiscal_year.status.value, "set as current"
            )
        if fiscal_year.is_current:
            return fiscal_year

        previous = self.session.execute(
            select(FiscalYear)
            .where(
                FiscalYear.organization_id == self.organization_id,
                FiscalYear.is_current.is_(True),
            )
            .with_for_update()
        ).scalars().all()
        for holder in previous:
            holder.is_current = False
            holder.updated_by_id = self.actor_id
        self.session.flush()

        fiscal_year.is_current = True
        fiscal_year.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "fiscal_year_set_current",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "previous_ids": [str(p.id) for p in previous],
            },
        )
        self._record_audit(
            AuditAction.FISCAL_YEAR_SET_CURRENT,
            _RESOURCE_YEAR,
            fiscal_year.id,
            previous_current_id=previous[0].id if previous else None,
        )
        self._invalidate_cache("fiscal_years")
        return fiscal_year

    def delete_fiscal_year(self, fiscal_year_id: UUID) -> None:
        """Delete a draft year that no journal entry references."""
        fiscal_year = self._get_year(fiscal_year_id, for_update=True)
        if fiscal_year.status != FiscalYearStatus.DRAFT:
            raise FiscalYearStateError(str(fiscal_year_id), fiscal_year.status.value, "delete")

        entry_count = self.session.execute(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.organization_id == self.organization_id,
                JournalEntry.fiscal_year_id == fiscal_year.id,
            )
        ).scalar_one()
        if entry_count:
            raise FiscalYearNotEmptyError(str(fiscal_year_id), entry_count)

        code = fiscal_year.code
        self.session.delete(fiscal_year)
        self.session.flush()

        logger.info("fiscal_year_deleted", extra={"fiscal_year_id": str(fiscal_year_id), "code": code})
        self._record_audit(AuditAction.FISCAL_YEAR_DELETED, _RESOURCE_YEAR, fiscal_year_id, code=code)
        self._invalidate_cache("fiscal_years")

    def get_fiscal_year_statistics(self, fiscal_year_id: UUID) -> FiscalYearStatistics:
        fiscal_year = self._get_year(fiscal_year_id)
        periods_by_status = Counter(p.status.value for p in fiscal_year.periods)
        rows = self.session.execute(
            select(JournalEntry.status, func.count(JournalEntry.id))
            .where(
                JournalEntry.organization_id == self.organization_id,
                JournalEntry.fiscal_year_id == fiscal_year.id,
            )
            .group_by(JournalEntry.status)
        ).all()
        entries_by_status = {status.value: count for status, count in rows}
        return FiscalYearStatistics(
            fiscal_year_id=fiscal_year.id,
            code=fiscal_year.code,
            status=fiscal_year.status.value,
            total_periods=len(fiscal_year.periods),
            periods_by_status=dict(periods_by_status),
            entries_by_status=entries_by_status,
            total_entries=sum(entries_by_status.values()),
        )

    # =========================================================================
    # Periods
    # =========================================================================

    def list_periods(self, fiscal_year_id: UUID) -> list[FiscalPeriod]:
        return list(self._get_year(fiscal_year_id).periods)

    def _get_period(self, period_id: UUID, for_update: bool = False) -> FiscalPeriod:
        query = select(FiscalPeriod).where(
            FiscalPeriod.id == period_id,
            FiscalPeriod.organization_id == self.organization_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        period = self.session.execute(query).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def get_period(self, period_id: UUID) -> FiscalPeriod:
        return self._get_period(period_id)

    def find_period_for_date(self, entry_date: date) -> FiscalPeriod | None:
        """ORM period covering a date, or None.  For collaborating services."""
        return self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.organization_id == self.organization_id,
                FiscalPeriod.start_date <= entry_date,
                FiscalPeriod.end_date >= entry_date,
            )
            .limit(1)
        ).scalar_one_or_none()

    def get_period_for_date(self, entry_date: date) -> PeriodInfo:
        """
        Period covering a date.

        Raises:
            NoPeriodForDateError: No period of the organization covers it.
        """
        period = self.find_period_for_date(entry_date)
        if period is None:
            raise NoPeriodForDateError(str(entry_date))
        return to_period_info(period)

    def is_date_postable(self, entry_date: date) -> bool:
        """True iff a period covers the date and is open or soft-closed."""
        period = self.find_period_for_date(entry_date)
        return period is not None and period.is_open

    def _require_year_open(self, period: FiscalPeriod, operation: str) -> None:
        fiscal_year = period.fiscal_year
        if fiscal_year.status != FiscalYearStatus.OPEN:
            raise FiscalYearStateError(
                str(fiscal_year.id),
                fiscal_year.status.value,
                f"{operation} a period of",
            )

    def close_period(self, period_id: UUID) -> FiscalPeriod:
        """open | soft_closed -> closed.  Parent year must be open."""
        period = self._get_period(period_id, for_update=True)
        if not period.is_open:
            raise PeriodStateError(str(period_id), period.status.value, "close")
        self._require_year_open(period, "close")

        previous = period.status
        period.status = PeriodStatus.CLOSED
        period.closed_at = self._clock.now()
        period.closed_by_id = self.actor_id
        period.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"period_id": str(period.id), "period_name": period.name},
        )
        self._record_audit(
            AuditAction.PERIOD_CLOSED,
            _RESOURCE_PERIOD,
            period.id,
            previous_status=previous,
            new_status=PeriodStatus.CLOSED,
        )
        self._invalidate_cache("fiscal_years", "journal_entries")
        return period

    def soft_close_period(self, period_id: UUID) -> FiscalPeriod:
        """open -> soft_closed.  Postings stay allowed but are flagged."""
        period = self._get_period(period_id, for_update=True)
        if period.status != PeriodStatus.OPEN:
            raise PeriodStateError(str(period_id), period.status.value, "soft-close")
        self._require_year_open(period, "soft-close")

        period.status = PeriodStatus.SOFT_CLOSED
        period.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "period_soft_closed",
            extra={"period_id": str(period.id), "period_name": period.name},
        )
        self._record_audit(
            AuditAction.PERIOD_SOFT_CLOSED,
            _RESOURCE_PERIOD,
            period.id,
            previous_status=PeriodStatus.OPEN,
            new_status=PeriodStatus.SOFT_CLOSED,
        )
        self._invalidate_cache("fiscal_years")
        return period

    def reopen_period(self, period_id: UUID, reason: str) -> FiscalPeriod:
        """
        closed | soft_closed -> open.

        Raises:
            PeriodStateError: Period already open, or locked.
            FiscalYearStateError: Parent year is not open.
        """
        period = self._get_period(period_id, for_update=True)
        if period.status not in (PeriodStatus.CLOSED, PeriodStatus.SOFT_CLOSED):
            raise PeriodStateError(str(period_id), period.status.value, "reopen")
        self._require_year_open(period, "reopen")

        previous = period.status
        period.status = PeriodStatus.OPEN
        period.reopened_at = self._clock.now()
        period.reopened_by_id = self.actor_id
        period.reopen_reason = reason
        period.updated_by_id = self.actor_id
        self.session.flush()

        logger.warning(
            "period_reopened",
            extra={
                "period_id": str(period.id),
                "period_name": period.name,
                "reason": reason,
            },
        )
        self._record_audit(
            AuditAction.PERIOD_REOPENED,
            _RESOURCE_PERIOD,
            period.id,
            previous_status=previous,
            new_status=PeriodStatus.OPEN,
            reason=reason,
        )
        self._invalidate_cache("fiscal_years", "journal_entries")
        return period
