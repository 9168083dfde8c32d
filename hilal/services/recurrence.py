"""Service for locating the next occurrence of a recurring countdown and
auto-advancing countdowns whose target has passed."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from datetime import datetime, time, tzinfo
from typing import TypeVar

from dateutil import tz
from dateutil.relativedelta import relativedelta
from dateutil.rrule import MONTHLY, rrule

from hilal.domain.errors import CalendarRangeError
from hilal.domain.models import CalendarType, Countdown, RecurrenceType
from hilal.services.adjustment import DEFAULT_WEEKEND, adjust
from hilal.services.calendar import CalendarConverter, TabularConverter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound on yearly steps when catching up a long-stale countdown.
_MAX_YEAR_STEPS = 200


def _with_tabular_fallback(
    compute: Callable[[CalendarConverter | TabularConverter], T],
    converter: CalendarConverter | None,
) -> T:
    """Run *compute* on Umm al-Qura, retrying on the tabular calendar past its range."""
    try:
        return compute(converter or CalendarConverter())
    except CalendarRangeError as exc:
        logger.warning("Umm al-Qura range exceeded (%s); using tabular calendar", exc)
        return compute(TabularConverter())


def next_monthly_occurrence(
    day: int,
    at: time,
    after: datetime,
    zone: tzinfo,
    calendar_type: CalendarType = CalendarType.GREGORIAN,
    converter: CalendarConverter | None = None,
) -> datetime:
    """First instant strictly after *after* falling on day *day* of a month at *at*.

    When the month is shorter than *day* the last day of that month is used.
    Hijri months are used when *calendar_type* is ``hijri``.
    """
    local_after = after.astimezone(zone)
    if calendar_type == CalendarType.HIJRI:
        return _with_tabular_fallback(
            lambda conv: _next_hijri_monthly(day, at, local_after, zone, conv), converter
        )

    month_start = datetime(local_after.year, local_after.month, 1, tzinfo=zone)
    # (day, -1) with bysetpos=1 picks `day`, or the last day when the month is shorter.
    rule = rrule(
        MONTHLY,
        dtstart=month_start,
        bymonthday=(day, -1),
        byhour=at.hour,
        byminute=at.minute,
        bysecond=0,
        bysetpos=1,
    )
    return tz.resolve_imaginary(rule.after(local_after, inc=False))


def _next_hijri_monthly(
    day: int,
    at: time,
    local_after: datetime,
    zone: tzinfo,
    converter: CalendarConverter | TabularConverter,
) -> datetime:
    current =converter.gregorian_to_hijri(local_after.date())
    year, month = current.year, int(current.month)
    # The current month may already be past; the next one never is.
    for _ in range(2):
        clamped = min(day, converter.month_length(month, year))
        gregorian = converter.hijri_to_gregorian(clamped, month, year)
        candidate = tz.resolve_imaginary(datetime.combine(gregorian, at, tzinfo=zone))
        if candidate > local_after:
            return candidate
        month += 1
        if month > 12:
            month, year = 1, year + 1
    raise AssertionError("next Hijri month must lie after the reference instant")


def next_yearly_occurrence(
    anchor: datetime,
    after: datetime,
    zone: tzinfo,
    calendar_type: CalendarType = CalendarType.GREGORIAN,
    converter: CalendarConverter | None = None,
) -> datetime:
    """Step *anchor* forward whole years until it lies strictly after *after*.

    Gregorian years use ``relativedelta`` (29 Feb falls back to 28 Feb);
    Hijri years keep the Hijri day and month, clamped to the month length.
    """
    local_anchor = anchor.astimezone(zone)
    if local_anchor > after:
        return local_anchor

    if calendar_type == CalendarType.HIJRI:
        return _with_tabular_fallback(
            lambda conv: _next_hijri_yearly(local_anchor, after, conv), converter
        )
    for step in range(1, _MAX_YEAR_STEPS + 1):
        candidate = tz.resolve_imaginary(local_anchor + relativedelta(years=step))
        if candidate > after:
            return candidate
    raise ValueError(f"{anchor.isoformat()} is too far behind {after.isoformat()}")


def _next_hijri_yearly(
    local_anchor: datetime,
    after: datetime,
    converter: CalendarConverter | TabularConverter,
) -> datetime:
    hijri = converter.gregorian_to_hijri(local_anchor.date())
    for step in range(1, _MAX_YEAR_STEPS + 1):
        year = hijri.year + step
        day = min(hijri.day, converter.month_length(hijri.month, year))
        gregorian = converter.hijri_to_gregorian(day, hijri.month, year)
        candidate = tz.resolve_imaginary(
            datetime.combine(gregorian, local_anchor.timetz())
        )
        if candidate > after:
            return candidate
    raise ValueError(f"{local_anchor.isoformat()} is too far behind {after.isoformat()}")


def recurrence_anchor(countdown: Countdown) -> datetime:
    return countdown.anchor_date or countdown.target_date


def upcoming_target(
    countdown: Countdown,
    reference_now: datetime,
    zone: tzinfo,
    weekend_days: Collection[int] = DEFAULT_WEEKEND,
    converter: CalendarConverter | None = None,
) -> datetime:
    """Target of the current or next occurrence of *countdown*.

    One-time countdowns, and recurring ones whose target is still ahead,
    keep their stored target.
    """
    if (
        countdown.recurrence_type == RecurrenceType.ONE_TIME
        or countdown.target_date > reference_now
    ):
        return countdown.target_date.astimezone(zone)
    anchor = next_anchor(countdown, reference_now, zone, converter)
    return adjust(anchor, countdown.adjustment_rule, weekend_days)


def next_anchor(
    countdown: Countdown,
    reference_now: datetime,
    zone: tzinfo,
    converter: CalendarConverter | None = None,
) -> datetime:
    """Unadjusted date of the next occurrence strictly after *reference_now*."""
    anchor = recurrence_anchor(countdown).astimezone(zone)
    if countdown.recurrence_type == RecurrenceType.MONTHLY:
        day = countdown.day_of_month or _anchor_day(anchor, countdown, converter)
        return next_monthly_occurrence(
            day,
            anchor.time(),
            reference_now,
            zone,
            countdown.calendar_type,
            converter,
        )
    return next_yearly_occurrence(
        anchor, reference_now, zone, countdown.calendar_type, converter
    )


def _anchor_day(
    anchor: datetime, countdown: Countdown, converter: CalendarConverter | None
) -> int:
    if countdown.calendar_type == CalendarType.HIJRI:
        return _with_tabular_fallback(
            lambda conv: conv.gregorian_to_hijri(anchor.date()).day, converter
        )
    return anchor.day


def advance_if_due(
    countdown: Countdown,
    reference_now: datetime,
    zone: tzinfo,
    weekend_days: Collection[int] = DEFAULT_WEEKEND,
    converter: CalendarConverter | None = None,
) -> Countdown | None:
    """Return *countdown* moved to its next occurrence, or None when not due.

    Only recurring countdowns whose target is at or before *reference_now*
    advance.  The countdown's adjustment rule is applied to the new anchor.
    """
    if countdown.recurrence_type == RecurrenceType.ONE_TIME:
        return None
    if countdown.target_date > reference_now:
        return None

    anchor = next_anchor(countdown, reference_now, zone, converter)
    return countdown.model_copy(
        update={
            "anchor_date": anchor,
            "target_date": adjust(anchor, countdown.adjustment_rule, weekend_days),
            "last_auto_advanced": reference_now,
        }
    )
