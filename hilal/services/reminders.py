"""Service for turning a countdown's reminder options into absolute fire instants."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, time, tzinfo

from dateutil import tz
from dateutil.relativedelta import relativedelta

from hilal.domain.models import (
    Countdown,
    PlanEntry,
    RecurrenceType,
    ReminderKind,
    ReminderOption,
)
from hilal.services.adjustment import DEFAULT_WEEKEND
from hilal.services.calendar import CalendarConverter
from hilal.services.recurrence import next_monthly_occurrence, upcoming_target


def fire_time(
    option: ReminderOption,
    target: datetime,
    countdown: Countdown,
    reference_now: datetime,
    zone: tzinfo,
    converter: CalendarConverter | None = None,
) -> datetime:
    if option.kind == ReminderKind.DAY_OF_MONTH:
        return next_monthly_occurrence(
            option.day,
            time(option.hour, option.minute),
            reference_now,
            zone,
            countdown.calendar_type,
            converter,
        )
    # Calendar-day subtraction on the local wall clock, so a DST change in
    # between does not shift the reminder's hour.
    return tz.resolve_imaginary(target - relativedelta(days=option.days))


def build_plan(
    countdown: Countdown,
    reference_now: datetime,
    zone: tzinfo,
    weekend_days: Collection[int] = DEFAULT_WEEKEND,
    converter: CalendarConverter | None = None,
) -> list[PlanEntry]:
    """Compute the reminders still to fire for *countdown*.

    ``days_before`` options count back from the target of the current
    occurrence (the next one for a recurring countdown whose target has
    passed); ``day_of_month`` options fire on the next matching day of a
    monthly countdown.  Entries at or before *reference_now* are dropped, so
    a one-time countdown in the past plans nothing.  The result is sorted by
    fire instant, then offset key, and depends only on the arguments.
    """
    if (
        countdown.recurrence_type == RecurrenceType.ONE_TIME
        and countdown.target_date <= reference_now
    ):
        return []

    target = upcoming_target(countdown, reference_now, zone, weekend_days, converter)
    entries = []
    for option in countdown.reminders:
        fire_at = fire_time(option, target, countdown, reference_now, zone, converter)
        if fire_at <= reference_now:
            continue
        entries.append(
            PlanEntry(offset_key=option.offset_key, fire_at=fire_at, option=option)
        )
    return sorted(entries, key=lambda e: (e.fire_at, e.offset_key))
