"""Service for converting between Hijri and Gregorian dates and locating the
next occurrence of a Hijri-anchored holiday."""

from __future__ import annotations

import math
from datetime import date

from hijridate import Gregorian, Hijri
from pydantic import BaseModel, ConfigDict

from hilal.domain.errors import CalendarRangeError
from hilal.domain.models import HijriDate, HolidayDefinition

_ISLAMIC_EPOCH_JD = 1948439.5
# Julian day of the day before 0001-01-01 (proleptic Gregorian ordinal 0).
_ORDINAL_OFFSET_JD = 1721424.5


class Occurrence(BaseModel):
    model_config = ConfigDict(frozen=True)

    hijri_year: int
    raw_date: date


class CalendarConverter:
    """Umm al-Qura conversion backed by the ``hijridate`` tables.

    The tables cover 1343-01-01 AH to 1500-12-30 AH (1924-08-01 to
    2077-11-16); anything outside raises ``CalendarRangeError``.
    """

    name = "umm-al-qura"

    def hijri_to_gregorian(self, day: int, month: int, year: int) -> date:
        try:
            gregorian = Hijri(year, int(month), day).to_gregorian()
        except (OverflowError, ValueError) as exc:
            raise CalendarRangeError(
                f"Hijri date {year}-{int(month):02d}-{day:02d} not convertible: {exc}"
            ) from exc
        return date(gregorian.year, gregorian.month, gregorian.day)

    def gregorian_to_hijri(self, value: date) -> HijriDate:
        try:
            hijri = Gregorian(value.year, value.month, value.day).to_hijri()
        except (OverflowError, ValueError) as exc:
            raise CalendarRangeError(
                f"Gregorian date {value.isoformat()} not convertible: {exc}"
            ) from exc
        return HijriDate(day=hijri.day, month=hijri.month, year=hijri.year)

    def month_length(self, month: int, year: int) -> int:
        try:
            return Hijri(year, int(month), 1).month_length()
        except (OverflowError, ValueError) as exc:
            raise CalendarRangeError(
                f"Hijri month {year}-{int(month):02d} not convertible: {exc}"
            ) from exc


class TabularConverter:
    """Arithmetic (tabular) Islamic calendar, the so-called Kuwaiti algorithm.

    Thirty-year cycle with leap years 2, 5, 7, 10, 13, 16, 18, 21, 24, 26
    and 29.  Months alternate 30/29 days; Dhu al-Hijjah gains a day in leap
    years.  Only an approximation of the sighted calendar, so results are
    always treated as tentative.
    """

    name = "tabular"

    @staticmethod
    def is_leap_year(year: int) -> bool:
        return (14 + 11 * year) % 30 < 11

    def month_length(self, month: int, year: int) -> int:
        if not 1 <= month <= 12:
            raise CalendarRangeError(f"Hijri month must be in 1..12, got {month}")
        if month % 2 == 1 or (month == 12 and self.is_leap_year(year)):
            return 30
        return 29

    @staticmethod
    def _to_julian_day(day: int, month: int, year: int) -> float:
        return (
            day
            + math.ceil(29.5 * (month - 1))
            + (year - 1) * 354
            + (3 + 11 * year) // 30
            + _ISLAMIC_EPOCH_JD
            - 1
        )

    def hijri_to_gregorian(self, day: int, month: int, year: int) -> date:
        if year < 1:
            raise CalendarRangeError(f"Hijri year must be positive, got {year}")
        length = self.month_length(month, year)
        if not 1 <= day <= length:
            raise CalendarRangeError(f"day must be in 1..{length} for month {month}")
        ordinal = int(self._to_julian_day(day, month, year) - _ORDINAL_OFFSET_JD)
        try:
            return date.fromordinal(ordinal)
        except (OverflowError, ValueError) as exc:
            raise CalendarRangeError(
                f"Hijri date {year}-{month:02d}-{day:02d} beyond Gregorian range"
            ) from exc

    def gregorian_to_hijri(self, value: date) -> HijriDate:
        julian_day = value.toordinal() + _ORDINAL_OFFSET_JD
        year = math.floor((30 * (julian_day - _ISLAMIC_EPOCH_JD) + 10646) / 10631)
        if year < 1:
            raise CalendarRangeError(f"{value.isoformat()} precedes the Hijri epoch")
        month = min(
            12,
            math.ceil((julian_day - (29 + self._to_julian_day(1, 1, year))) / 29.5) + 1,
        )
        day = int(julian_day - self._to_julian_day(1, month, year)) + 1
        return HijriDate(day=day, month=month, year=year)


def occurrence_in(
    definition: HolidayDefinition,
    hijri_year: int,
    converter: CalendarConverter | TabularConverter,
) -> date:
    """Gregorian date of *definition* in *hijri_year*.

    A day past the end of a short month resolves to the month's last day.
    """
    day = min(definition.hijri_day, converter.month_length(definition.hijri_month, hijri_year))
    return converter.hijri_to_gregorian(day, definition.hijri_month, hijri_year)


def next_occurrence(
    definition: HolidayDefinition,
    after: date,
    converter: CalendarConverter | TabularConverter,
) -> Occurrence:
    """Return the first occurrence of *definition* strictly after *after*.

    Starts from the Hijri year containing *after*; if that year's occurrence
    is on or before *after* it moves forward exactly one Hijri year.
    """
    hijri_year = converter.gregorian_to_hijri(after).year
    raw_date = occurrence_in(definition, hijri_year, converter)
    if raw_date <= after:
        hijri_year += 1
        raw_date = occurrence_in(definition, hijri_year, converter)
    return Occurrence(hijri_year=hijri_year, raw_date=raw_date)
