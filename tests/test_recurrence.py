"""Tests for recurring countdowns: next monthly/yearly occurrence and auto-advance."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

from dateutil import tz

from hilal.domain.models import (
    AdjustmentRule,
    CalendarType,
    Countdown,
    HijriMonth,
    RecurrenceType,
)
from hilal.services.calendar import CalendarConverter
from hilal.services.recurrence import (
    advance_if_due,
    next_monthly_occurrence,
    next_yearly_occurrence,
)

RIYADH = tz.gettz("Asia/Riyadh")
converter = CalendarConverter()


# ---------------------------------------------------------------------------
# next_monthly_occurrence
# ---------------------------------------------------------------------------


def test_monthly_is_strictly_after_reference():
    at = datetime(2026, 5, 25, 9, 0, tzinfo=RIYADH)
    nxt = next_monthly_occurrence(25, time(9, 0), at, RIYADH)
    assert nxt == datetime(2026, 6, 25, 9, 0, tzinfo=RIYADH)


def test_monthly_same_month_when_still_ahead():
    at = datetime(2026, 5, 25, 8, 59, tzinfo=RIYADH)
    nxt = next_monthly_occurrence(25, time(9, 0), at, RIYADH)
    assert nxt == datetime(2026, 5, 25, 9, 0, tzinfo=RIYADH)


def test_monthly_clamps_in_leap_february():
    at = datetime(2028, 2, 1, tzinfo=RIYADH)
    nxt = next_monthly_occurrence(30, time(9, 0), at, RIYADH)
    assert nxt == datetime(2028, 2, 29, 9, 0, tzinfo=RIYADH)


def test_hijri_monthly_clamps_to_short_month():
    short = next(m for m in HijriMonth if converter.month_length(m, 1448) == 29)
    first = converter.hijri_to_gregorian(1, short, 1448)
    at = datetime.combine(first, time(0), tzinfo=RIYADH)

    nxt = next_monthly_occurrence(
        30, time(9, 0), at, RIYADH, CalendarType.HIJRI, converter
    )
    expected = converter.hijri_to_gregorian(29, short, 1448)
    assert nxt == datetime.combine(expected, time(9, 0), tzinfo=RIYADH)


# ---------------------------------------------------------------------------
# next_yearly_occurrence
# ---------------------------------------------------------------------------


def test_yearly_leap_day_falls_back_to_feb_28():
    anchor = datetime(2024, 2, 29, 10, 0, tzinfo=RIYADH)
    nxt = next_yearly_occurrence(anchor, datetime(2024, 3, 1, tzinfo=RIYADH), RIYADH)
    assert nxt == datetime(2025, 2, 28, 10, 0, tzinfo=RIYADH)


def test_yearly_catches_up_several_years():
    anchor = datetime(2020, 7, 1, tzinfo=RIYADH)
    nxt = next_yearly_occurrence(anchor, datetime(2026, 8, 1, tzinfo=RIYADH), RIYADH)
    assert nxt == datetime(2027, 7, 1, tzinfo=RIYADH)


def test_hijri_yearly_keeps_hijri_day():
    # 1 Shawwal 1445 -> 1 Shawwal 1446.
    anchor = datetime(2024, 4, 10, tzinfo=RIYADH)
    nxt = next_yearly_occurrence(
        anchor,
        datetime(2024, 5, 1, tzinfo=RIYADH),
        RIYADH,
        CalendarType.HIJRI,
        converter,
    )
    expected = converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1446)
    assert nxt.date() == expected
    assert nxt < anchor + timedelta(days=365)


def test_hijri_yearly_beyond_1500_falls_back_to_tabular():
    # Umm al-Qura tables stop at the end of 1500 AH (2077-11-16).
    anchor = datetime(2077, 11, 1, tzinfo=RIYADH)
    nxt = next_yearly_occurrence(
        anchor,
        datetime(2077, 11, 10, tzinfo=RIYADH),
        RIYADH,
        CalendarType.HIJRI,
        converter,
    )
    assert timedelta(days=353) <= nxt - anchor <= timedelta(days=355)


def test_hijri_monthly_beyond_1500_falls_back_to_tabular():
    after = datetime(2077, 11, 20, tzinfo=RIYADH)
    nxt = next_monthly_occurrence(
        15, time(9, 0), after, RIYADH, CalendarType.HIJRI, converter
    )
    assert after < nxt < after + timedelta(days=31)
    assert nxt.hour == 9


# ---------------------------------------------------------------------------
# advance_if_due
# ---------------------------------------------------------------------------

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_one_time_never_advances():
    countdown = Countdown(title="Trip", target_date=_NOW - timedelta(days=1))
    assert advance_if_due(countdown, _NOW, RIYADH) is None


def test_future_target_does_not_advance():
    countdown = Countdown(
        title="Birthday",
        target_date=_NOW + timedelta(days=1),
        recurrence_type=RecurrenceType.YEARLY,
    )
    assert advance_if_due(countdown, _NOW, RIYADH) is None


def test_yearly_advances_one_year():
    countdown = Countdown(
        title="Birthday",
        target_date=datetime(2026, 5, 20, 9, 0, tzinfo=RIYADH),
        recurrence_type=RecurrenceType.YEARLY,
    )
    advanced = advance_if_due(countdown, _NOW, RIYADH)
    assert advanced.target_date == datetime(2027, 5, 20, 9, 0, tzinfo=RIYADH)
    assert advanced.last_auto_advanced == _NOW
    assert advanced.id == countdown.id


def test_monthly_advance_applies_adjustment_rule():
    # 2026-07-10 is a Friday; smart moves the observed target to Sunday.
    countdown = Countdown(
        title="Salary",
        target_date=datetime(2026, 5, 10, 9, 0, tzinfo=RIYADH),
        recurrence_type=RecurrenceType.MONTHLY,
        adjustment_rule=AdjustmentRule.SMART,
        day_of_month=10,
    )
    now = datetime(2026, 6, 11, tzinfo=RIYADH)
    advanced = advance_if_due(countdown, now, RIYADH)
    assert advanced.anchor_date == datetime(2026, 7, 10, 9, 0, tzinfo=RIYADH)
    assert advanced.target_date == datetime(2026, 7, 12, 9, 0, tzinfo=RIYADH)
