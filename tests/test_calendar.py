"""Tests for the Hijri/Gregorian converters and next-occurrence lookup."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from hilal.domain.catalog import get_holiday
from hilal.domain.errors import CalendarRangeError
from hilal.domain.models import HijriDate, HijriMonth, HolidayDefinition
from hilal.services.calendar import (
    CalendarConverter,
    TabularConverter,
    next_occurrence,
    occurrence_in,
)

converter = CalendarConverter()
tabular = TabularConverter()


# ---------------------------------------------------------------------------
# Umm al-Qura
# ---------------------------------------------------------------------------


def test_known_umm_al_qura_dates():
    assert converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1445) == date(2024, 4, 10)
    assert converter.hijri_to_gregorian(1, HijriMonth.RAMADAN, 1445) == date(2024, 3, 11)
    assert converter.gregorian_to_hijri(date(2024, 3, 11)) == HijriDate(
        day=1, month=HijriMonth.RAMADAN, year=1445
    )


def test_round_trip_through_a_year():
    for month in HijriMonth:
        for day in range(1, converter.month_length(month, 1446) + 1):
            gregorian = converter.hijri_to_gregorian(day, month, 1446)
            assert converter.gregorian_to_hijri(gregorian) == HijriDate(
                day=day, month=month, year=1446
            )


def test_later_hijri_years_are_later_gregorian_dates():
    dates = [converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, y) for y in range(1440, 1460)]
    assert dates == sorted(dates)
    assert len(set(dates)) == len(dates)


def test_out_of_range_raises_calendar_range_error():
    with pytest.raises(CalendarRangeError):
        converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1600)
    with pytest.raises(CalendarRangeError):
        converter.gregorian_to_hijri(date(1900, 1, 1))


def test_calendar_range_error_is_a_value_error():
    with pytest.raises(ValueError):
        converter.hijri_to_gregorian(1, HijriMonth.MUHARRAM, 1200)


# ---------------------------------------------------------------------------
# Tabular fallback
# ---------------------------------------------------------------------------


def test_tabular_epoch():
    # 1 Muharram 1 AH is 16 July 622 (Julian), i.e. 19 July 622 proleptic Gregorian.
    assert tabular.hijri_to_gregorian(1, 1, 1) == date(622, 7, 19)


def test_tabular_leap_years():
    leaps = [y for y in range(1, 31) if tabular.is_leap_year(y)]
    assert leaps == [2, 5, 7, 10, 13, 16, 18, 21, 24, 26, 29]
    assert tabular.month_length(12, 2) == 30
    assert tabular.month_length(12, 1) == 29


def test_tabular_round_trip_and_range():
    for offset in range(0, 400, 13):
        value = date(2080, 1, 1) + timedelta(days=offset)
        hijri = tabular.gregorian_to_hijri(value)
        assert tabular.hijri_to_gregorian(hijri.day, hijri.month, hijri.year) == value


def test_tabular_stays_close_to_umm_al_qura():
    official = converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1445)
    approx = tabular.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1445)
    assert abs((approx - official).days) <= 2


# ---------------------------------------------------------------------------
# Occurrences
# ---------------------------------------------------------------------------


def test_next_occurrence_before_the_date():
    eid = get_holiday("eid-fitr")
    occurrence = next_occurrence(eid, date(2024, 4, 9), converter)
    assert occurrence.hijri_year == 1445
    assert occurrence.raw_date == date(2024, 4, 10)


def test_next_occurrence_on_the_date_moves_one_year():
    eid = get_holiday("eid-fitr")
    occurrence = next_occurrence(eid, date(2024, 4, 10), converter)
    assert occurrence.hijri_year == 1446
    assert occurrence.raw_date == converter.hijri_to_gregorian(1, HijriMonth.SHAWWAL, 1446)


def test_next_occurrence_is_always_after_reference():
    eid = get_holiday("eid-adha")
    start = date(2024, 1, 1)
    for offset in range(0, 800, 17):
        after = start + timedelta(days=offset)
        assert next_occurrence(eid, after, converter).raw_date > after


def test_occurrence_clamps_day_to_short_month():
    short = next(m for m in HijriMonth if converter.month_length(m, 1445) == 29)
    definition = HolidayDefinition(
        event_id="month-end",
        name_en="Month end",
        name_ar="نهاية الشهر",
        hijri_day=30,
        hijri_month=short,
        icon="📅",
    )
    assert occurrence_in(definition, 1445, converter) == converter.hijri_to_gregorian(
        29, short, 1445
    )
