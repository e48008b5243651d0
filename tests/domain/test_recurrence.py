"""
Recurrence calendar arithmetic.

Covers:
- Occurrence stepping for every frequency
- Short-month policies (LAST_DAY, SKIP, FIRST_OF_NEXT)
- Weekend and holiday adjustment
- occurrences_between stop conditions
- Property checks with Hypothesis
"""

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.recurrence import (
    DailyRecurrence,
    EndOfMonthHandling,
    Frequency,
    MonthlyRecurrence,
    WeekendAdjustment,
    WeeklyRecurrence,
    adjust_for_holidays,
    adjust_for_weekends,
    build_recurrence,
    is_weekend,
    occurrences_between,
    resolve_business_date,
)

# 2024-11-11 is Independence Day (Monday)
INDEPENDENCE_DAY = date(2024, 11, 11)


# =============================================================================
# Builders
# =============================================================================


class TestBuildRecurrence:
    """Frequency descriptor -> recurrence variant."""

    def test_daily(self):
        rec = build_recurrence(Frequency.DAILY, anchor=date(2024, 1, 1), interval=3)
        assert rec == DailyRecurrence(3)

    def test_biweekly_doubles_interval(self):
        rec = build_recurrence("BIWEEKLY", anchor=date(2024, 1, 1), day_of_week=4)
        assert rec == WeeklyRecurrence(2, 4)

    def test_quarterly_steps_three_months(self):
        rec = build_recurrence(Frequency.QUARTERLY, anchor=date(2024, 1, 15))
        assert isinstance(rec, MonthlyRecurrence)
        assert rec.step_months == 3
        assert rec.day_of_month == 15

    def test_yearly_steps_twelve_months(self):
        rec = build_recurrence(Frequency.YEARLY, anchor=date(2024, 3, 10), interval=2)
        assert rec.step_months == 24

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"interval": 0},
            {"day_of_week": 7},
            {"day_of_month": 0},
            {"day_of_month": 32},
            {"month_of_year": 13},
        ],
    )
    def test_out_of_range_parameters_rejected(self, kwargs):
        with pytest.raises(ValueError):
            build_recurrence(Frequency.MONTHLY, anchor=date(2024, 1, 1), **kwargs)

    def test_unknown_frequency_rejected(self):
        with pytest.raises(ValueError):
            build_recurrence("HOURLY", anchor=date(2024, 1, 1))


# =============================================================================
# Stepping
# =============================================================================


class TestWeekly:

    def test_first_occurrence_moves_to_requested_weekday(self):
        rec = WeeklyRecurrence(1, day_of_week=0)
        # Wednesday -> following Monday
        assert rec.first_occurrence(date(2024, 3, 13)) == date(2024, 3, 18)

    def test_next_occurrence(self):
        rec = WeeklyRecurrence(1, day_of_week=0)
        assert rec.next_occurrence(date(2024, 3, 18)) == date(2024, 3, 25)

    def test_biweekly_next_occurrence(self):
        rec = build_recurrence(Frequency.BIWEEKLY, anchor=date(2024, 3, 18), day_of_week=0)
        assert rec.next_occurrence(date(2024, 3, 18)) == date(2024, 4, 1)

    def test_without_weekday_keeps_start(self):
        rec = WeeklyRecurrence(1)
        assert rec.first_occurrence(date(2024, 3, 13)) == date(2024, 3, 13)
        assert rec.next_occurrence(date(2024, 3, 13)) == date(2024, 3, 20)


class TestMonthly:

    def _monthly(self, policy, dom=31):
        return build_recurrence(
            Frequency.MONTHLY,
            anchor=date(2024, 1, 31),
            day_of_month=dom,
            end_of_month=policy,
        )

    def test_last_day_clamps_february(self):
        rec = self._monthly(EndOfMonthHandling.LAST_DAY)
        assert rec.next_occurrence(date(2024, 1, 31)) == date(2024, 2, 29)

    def test_last_day_restores_day_after_short_month(self):
        rec = self._monthly(EndOfMonthHandling.LAST_DAY)
        assert rec.next_occurrence(date(2024, 2, 29)) == date(2024, 3, 31)

    def test_skip_drops_short_months(self):
        rec = self._monthly(EndOfMonthHandling.SKIP)
        assert rec.next_occurrence(date(2024, 1, 31)) == date(2024, 3, 31)
        # April has 30 days
        assert rec.next_occurrence(date(2024, 3, 31)) == date(2024, 5, 31)

    def test_first_of_next_rolls_over(self):
        rec = self._monthly(EndOfMonthHandling.FIRST_OF_NEXT)
        assert rec.next_occurrence(date(2024, 1, 31)) == date(2024, 3, 1)
        assert rec.next_occurrence(date(2024, 3, 1)) == date(2024, 3, 31)

    def test_first_occurrence_on_start(self):
        rec = build_recurrence(Frequency.MONTHLY, anchor=date(2024, 1, 10), day_of_month=10)
        assert rec.first_occurrence(date(2024, 1, 10)) == date(2024, 1, 10)

    def test_first_occurrence_after_start(self):
        rec = build_recurrence(Frequency.MONTHLY, anchor=date(2024, 1, 20), day_of_month=10)
        assert rec.first_occurrence(date(2024, 1, 20)) == date(2024, 2, 10)

    def test_quarterly(self):
        rec = build_recurrence(Frequency.QUARTERLY, anchor=date(2024, 1, 15))
        assert rec.next_occurrence(date(2024, 1, 15)) == date(2024, 4, 15)
        assert rec.next_occurrence(date(2024, 4, 15)) == date(2024, 7, 15)

    def test_yearly_with_month_of_year(self):
        rec = build_recurrence(
            Frequency.YEARLY, anchor=date(2024, 3, 10), day_of_month=30, month_of_year=6
        )
        assert rec.first_occurrence(date(2024, 3, 10)) == date(2024, 6, 30)
        assert rec.next_occurrence(date(2024, 6, 30)) == date(2025, 6, 30)


# =============================================================================
# Business-day adjustment
# =============================================================================


class TestWeekendAdjustment:

    @pytest.mark.parametrize(
        "day, policy, expected",
        [
            (date(2024, 3, 16), WeekendAdjustment.PREVIOUS, date(2024, 3, 15)),
            (date(2024, 3, 17), WeekendAdjustment.PREVIOUS, date(2024, 3, 15)),
            (date(2024, 3, 16), WeekendAdjustment.NEXT, date(2024, 3, 18)),
            (date(2024, 3, 17), WeekendAdjustment.NEXT, date(2024, 3, 18)),
            (date(2024, 3, 16), WeekendAdjustment.NONE, date(2024, 3, 16)),
            (date(2024, 3, 14), WeekendAdjustment.PREVIOUS, date(2024, 3, 14)),
        ],
    )
    def test_adjust_for_weekends(self, day, policy, expected):
        assert adjust_for_weekends(day, policy) == expected

    def test_is_weekend(self):
        assert is_weekend(date(2024, 3, 16))
        assert not is_weekend(date(2024, 3, 15))


class TestHolidayAdjustment:

    def test_previous_steps_back_over_holiday_and_weekend(self):
        result = resolve_business_date(
            INDEPENDENCE_DAY,
            skip_weekends=True,
            skip_holidays=True,
            policy=WeekendAdjustment.PREVIOUS,
            holidays={INDEPENDENCE_DAY},
        )
        assert result == date(2024, 11, 8)

    def test_next_steps_forward(self):
        result = resolve_business_date(
            INDEPENDENCE_DAY,
            skip_weekends=True,
            skip_holidays=True,
            policy=WeekendAdjustment.NEXT,
            holidays={INDEPENDENCE_DAY},
        )
        assert result == date(2024, 11, 12)

    def test_holidays_ignored_when_not_skipped(self):
        result = resolve_business_date(
            INDEPENDENCE_DAY,
            skip_weekends=True,
            skip_holidays=False,
            policy=WeekendAdjustment.NEXT,
            holidays={INDEPENDENCE_DAY},
        )
        assert result == INDEPENDENCE_DAY

    def test_friday_holiday_moves_past_weekend(self):
        # 2024-11-01 (All Saints) is a Friday
        result = resolve_business_date(
            date(2024, 11, 1),
            skip_weekends=False,
            skip_holidays=True,
            policy=WeekendAdjustment.NEXT,
            holidays={date(2024, 11, 1)},
        )
        assert result == date(2024, 11, 4)

    def test_monday_holiday_moves_back_past_weekend_without_weekend_skip(self):
        result = resolve_business_date(
            INDEPENDENCE_DAY,
            skip_weekends=False,
            skip_holidays=True,
            policy=WeekendAdjustment.PREVIOUS,
            holidays={INDEPENDENCE_DAY},
        )
        assert result == date(2024, 11, 8)

    @pytest.mark.parametrize("holidays", [set(), {date(2024, 12, 25)}, {INDEPENDENCE_DAY}])
    def test_unrelated_holidays_do_not_move_weekend_under_none(self, holidays):
        result = resolve_business_date(
            date(2024, 11, 9),
            skip_weekends=True,
            skip_holidays=True,
            policy=WeekendAdjustment.NONE,
            holidays=holidays,
        )
        assert result == date(2024, 11, 9)

    def test_non_holiday_is_unchanged(self):
        assert adjust_for_holidays(date(2024, 11, 9), {INDEPENDENCE_DAY}, WeekendAdjustment.NEXT) == date(2024, 11, 9)

    @settings(max_examples=200)
    @given(
        day=st.dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31)),
        policy=st.sampled_from([WeekendAdjustment.PREVIOUS, WeekendAdjustment.NEXT]),
    )
    def test_holiday_resolves_to_business_day(self, day, policy):
        holidays = {day, day + timedelta(days=1), day - timedelta(days=1)}
        result = adjust_for_holidays(day, holidays, policy)
        assert result not in holidays
        assert not is_weekend(result)

    def test_gives_up_after_max_attempts(self):
        start = date(2024, 12, 1)
        holidays = {start + timedelta(days=i) for i in range(20)}
        result = adjust_for_holidays(start, holidays, WeekendAdjustment.NEXT, max_attempts=3)
        assert result == date(2024, 12, 4)


# =============================================================================
# Occurrence listing
# =============================================================================


class TestOccurrencesBetween:

    def test_until_is_inclusive(self):
        dates = occurrences_between(
            DailyRecurrence(1), date(2024, 3, 1), until=date(2024, 3, 3)
        )
        assert dates == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]

    def test_limit_and_remaining(self):
        rec = DailyRecurrence(1)
        assert len(occurrences_between(rec, date(2024, 3, 1), limit=5)) == 5
        assert len(occurrences_between(rec, date(2024, 3, 1), limit=5, remaining=2)) == 2

    def test_end_date_stops_listing(self):
        rec = WeeklyRecurrence(1)
        dates = occurrences_between(rec, date(2024, 3, 1), limit=10, end_date=date(2024, 3, 20))
        assert dates == [date(2024, 3, 1), date(2024, 3, 8), date(2024, 3, 15)]

    def test_cap_bounds_unbounded_listing(self):
        assert len(occurrences_between(DailyRecurrence(1), date(2024, 1, 1), cap=7)) == 7


# =============================================================================
# Properties
# =============================================================================


days_2020s = st.dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31))


class TestRecurrenceProperties:

    @given(start=days_2020s, dom=st.integers(min_value=1, max_value=31))
    @settings(max_examples=200, deadline=None)
    def test_monthly_last_day_sequence_is_increasing(self, start, dom):
        """Each step lands in the next month on min(day, month length)."""
        rec = build_recurrence(Frequency.MONTHLY, anchor=start, day_of_month=dom)
        current = rec.first_occurrence(start)
        for _ in range(6):
            nxt = rec.next_occurrence(current)
            assert nxt > current
            month_len = ((nxt.replace(day=28) + timedelta(days=4)).replace(day=1) - timedelta(days=1)).day
            assert nxt.day == min(dom, month_len)
            current = nxt

    @given(day=days_2020s, policy=st.sampled_from([WeekendAdjustment.PREVIOUS, WeekendAdjustment.NEXT]))
    def test_weekend_adjustment_lands_on_weekday(self, day, policy):
        adjusted = adjust_for_weekends(day, policy)
        assert not is_weekend(adjusted)
        assert abs((adjusted - day).days) <= 2

    @given(
        start=days_2020s,
        interval=st.integers(min_value=1, max_value=10),
        count=st.integers(min_value=1, max_value=30),
    )
    def test_daily_listing_spacing(self, start, interval, count):
        dates = occurrences_between(DailyRecurrence(interval), start, limit=count)
        assert len(dates) == count
        assert all((b - a).days == interval for a, b in zip(dates, dates[1:]))
