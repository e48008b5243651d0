"""
Recurrence -- calendar arithmetic for recurring schedules.

Responsibility:
    Computes the nominal occurrence dates of a recurring schedule and maps a
    nominal date onto a business date (weekend and holiday adjustment).

Architecture position:
    Kernel > Domain -- pure functions and frozen values, zero I/O.

Each frequency is one variant with a single ``next_occurrence(current)``
contract:

    DAILY       DailyRecurrence(interval)
    WEEKLY      WeeklyRecurrence(interval, day_of_week)
    BIWEEKLY    WeeklyRecurrence(2 * interval, day_of_week)
    MONTHLY     MonthlyRecurrence(interval months)
    QUARTERLY   MonthlyRecurrence(3 * interval months)
    YEARLY      MonthlyRecurrence(12 * interval months, month_of_year)

Nominal dates are the schedule cursor.  Business-day adjustment is applied
on top and never fed back, so a Saturday occurrence moved to Friday does not
drag the following occurrences with it.
"""

from __future__ import annotations

import calendar
from collections.abc import Collection
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Protocol

# Upper bound on aligned months scanned when every slot is skipped
_MAX_MONTH_SCAN = 48


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class EndOfMonthHandling(str, Enum):
    """What to do when day_of_month does not exist in the target month."""

    LAST_DAY = "LAST_DAY"  # clamp to the month's last day
    SKIP = "SKIP"  # no occurrence that month
    FIRST_OF_NEXT = "FIRST_OF_NEXT"  # roll to the 1st of the following month


class WeekendAdjustment(str, Enum):
    PREVIOUS = "PREVIOUS"
    NEXT = "NEXT"
    NONE = "NONE"


class Recurrence(Protocol):
    """Contract shared by every frequency variant."""

    def first_occurrence(self, start: date) -> date:
        """First nominal occurrence on or after ``start``."""
        ...

    def next_occurrence(self, current: date) -> date:
        """Nominal occurrence strictly after ``current``."""
        ...


@dataclass(frozen=True)
class DailyRecurrence:
    interval: int = 1

    def first_occurrence(self, start: date) -> date:
        return start

    def next_occurrence(self, current: date) -> date:
        return current + timedelta(days=self.interval)


@dataclass(frozen=True)
class WeeklyRecurrence:
    """Every ``interval`` weeks, pinned to ``day_of_week`` (0=Monday)."""

    interval: int = 1
    day_of_week: int | None = None

    def first_occurrence(self, start: date) -> date:
        if self.day_of_week is None:
            return start
        return start + timedelta(days=(self.day_of_week - start.weekday()) % 7)

    def next_occurrence(self, current: date) -> date:
        candidate = current + timedelta(weeks=self.interval)
        if self.day_of_week is None:
            return candidate
        return candidate + timedelta(days=(self.day_of_week - candidate.weekday()) % 7)


def _month_index(day: date) -> int:
    return day.year * 12 + day.month - 1


@dataclass(frozen=True)
class MonthlyRecurrence:
    """
    Every ``step_months`` months, aligned on ``anchor_month`` (a
    year*12 + month-1 index), on ``day_of_month``.
    """

    step_months: int
    day_of_month: int
    anchor_month: int
    end_of_month: EndOfMonthHandling = EndOfMonthHandling.LAST_DAY

    def _slot_date(self, month_idx: int) -> date | None:
        year, month0 = divmod(month_idx, 12)
        month = month0 + 1
        last_day = calendar.monthrange(year, month)[1]
        if self.day_of_month <= last_day:
            return date(year, month, self.day_of_month)
        if self.end_of_month == EndOfMonthHandling.LAST_DAY:
            return date(year, month, last_day)
        if self.end_of_month == EndOfMonthHandling.SKIP:
            return None
        return date(year, month, last_day) + timedelta(days=1)

    def _aligned_at_or_before(self, month_idx: int) -> int:
        return month_idx - (month_idx - self.anchor_month) % self.step_months

    def _scan(self, from_month: int, accept) -> date:
        idx = self._aligned_at_or_before(from_month)
        for _ in range(_MAX_MONTH_SCAN):
            candidate = self._slot_date(idx)
            if candidate is not None and accept(candidate):
                return candidate
            idx += self.step_months
        raise ValueError(
            f"No occurrence of day {self.day_of_month} found within "
            f"{_MAX_MONTH_SCAN} aligned months"
        )

    def first_occurrence(self, start: date) -> date:
        return self._scan(_month_index(start), lambda d: d >= start)

    def next_occurrence(self, current: date) -> date:
        # FIRST_OF_NEXT can place a slot's date in the following month, so
        # start one month back.
        return self._scan(_month_index(current) - 1, lambda d: d > current)


def build_recurrence(
    frequency: Frequency | str,
    *,
    anchor: date,
    interval: int = 1,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    month_of_year: int | None = None,
    end_of_month: EndOfMonthHandling | str = EndOfMonthHandling.LAST_DAY,
) -> Recurrence:
    """
    Build the recurrence variant for a schedule's frequency descriptor.

    Args:
        frequency: Frequency member or its value.
        anchor: Schedule start date; aligns intervals and supplies defaults
            for day_of_month / month_of_year.
        interval: Number of frequency units between occurrences (>= 1).
        day_of_week: 0=Monday .. 6=Sunday, weekly variants only.
        day_of_month: 1..31, monthly variants only.
        month_of_year: 1..12, yearly only.
        end_of_month: Short-month policy for monthly variants.

    Raises:
        ValueError: On an out-of-range parameter.
    """
    frequency = Frequency(frequency)
    end_of_month = EndOfMonthHandling(end_of_month)
    if interval < 1:
        raise ValueError("interval must be at least 1")
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ValueError("day_of_month must be between 1 and 31")
    if month_of_year is not None and not 1 <= month_of_year <= 12:
        raise ValueError("month_of_year must be between 1 and 12")

    if frequency == Frequency.DAILY:
        return DailyRecurrence(interval)
    if frequency in (Frequency.WEEKLY, Frequency.BIWEEKLY):
        weeks = interval * 2 if frequency == Frequency.BIWEEKLY else interval
        return WeeklyRecurrence(weeks, day_of_week)

    dom = day_of_month or anchor.day
    if frequency == Frequency.YEARLY:
        anchor_month = anchor.year * 12 + (month_of_year or anchor.month) - 1
        return MonthlyRecurrence(12 * interval, dom, anchor_month, end_of_month)
    months = 3 * interval if frequency == Frequency.QUARTERLY else interval
    return MonthlyRecurrence(months, dom, _month_index(anchor), end_of_month)


# ---------------------------------------------------------------------------
# Business-day adjustment
# ---------------------------------------------------------------------------


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def adjust_for_weekends(day: date, policy: WeekendAdjustment | str) -> date:
    """
    Move a weekend date to a business day.

    PREVIOUS maps Saturday and Sunday to the preceding Friday; NEXT maps
    both to the following Monday; NONE and weekday inputs are unchanged.
    """
    policy = WeekendAdjustment(policy)
    weekday = day.weekday()
    if weekday < 5 or policy == WeekendAdjustment.NONE:
        return day
    if policy == WeekendAdjustment.PREVIOUS:
        return day - timedelta(days=weekday - 4)
    return day + timedelta(days=7 - weekday)


def adjust_for_holidays(
    day: date,
    holidays: Collection[date],
    policy: WeekendAdjustment | str,
    *,
    max_attempts: int = 10,
) -> date:
    """
    Move a holiday to the nearest business day in the policy's direction.

    PREVIOUS steps backwards, every other policy steps forwards.  Weekends
    are stepped over together with holidays, so the result is never a
    Saturday or Sunday.  Non-holiday dates are returned unchanged.  Gives up
    after ``max_attempts`` steps and returns the last date reached.
    """
    if day not in holidays:
        return day
    step = timedelta(days=-1 if WeekendAdjustment(policy) == WeekendAdjustment.PREVIOUS else 1)
    for _ in range(max_attempts):
        day += step
        if day not in holidays and not is_weekend(day):
            break
    return day


def resolve_business_date(
    nominal: date,
    *,
    skip_weekends: bool,
    skip_holidays: bool,
    policy: WeekendAdjustment | str,
    holidays: Collection[date] = (),
    max_attempts: int = 10,
) -> date:
    """Entry date for a nominal occurrence after weekend/holiday rules."""
    day = nominal
    if skip_weekends:
        day = adjust_for_weekends(day, policy)
    if skip_holidays:
        day = adjust_for_holidays(day, holidays, policy, max_attempts=max_attempts)
    return day


def occurrences_between(
    recurrence: Recurrence,
    cursor: date,
    *,
    until: date | None = None,
    limit: int | None = None,
    end_date: date | None = None,
    remaining: int | None = None,
    cap: int = 1000,
) -> list[date]:
    """
    Nominal occurrences starting at ``cursor`` (inclusive).

    Stops at the first of: date past ``until`` or ``end_date``, ``limit``
    dates collected, ``remaining`` occurrences used up, or ``cap`` dates.
    """
    dates: list[date] = []
    bound = cap
    for value in (limit, remaining):
        if value is not None:
            bound = min(bound, value)
    current = cursor
    while len(dates) < bound:
        if until is not None and current > until:
            break
        if end_date is not None and current > end_date:
            break
        dates.append(current)
        current = recurrence.next_occurrence(current)
    return dates
