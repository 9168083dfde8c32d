"""Service for deciding the observed date of a holiday or payday under an
adjustment rule."""

from __future__ import annotations

from collections.abc import Collection
from datetime import date, datetime

from dateutil.relativedelta import relativedelta
from dateutil.rrule import FR, SA

from hilal.domain.models import AdjustmentRule

DEFAULT_WEEKEND = frozenset({FR.weekday, SA.weekday})


def is_weekend(value: date, weekend_days: Collection[int] = DEFAULT_WEEKEND) -> bool:
    return value.weekday() in weekend_days


def adjust(
    raw: datetime,
    rule: AdjustmentRule,
    weekend_days: Collection[int] = DEFAULT_WEEKEND,
) -> datetime:
    """Return the observed date for *raw* under *rule*.

    ``none`` returns *raw* unchanged.  ``smart`` moves a weekend date forward
    one calendar day at a time (wall clock preserved) until it lands on a
    working day.  *raw* is expected in the local zone whose weekend applies.
    """
    if rule == AdjustmentRule.NONE:
        return raw

    weekend = frozenset(weekend_days)
    if len(weekend) >= 7:
        raise ValueError("weekend_days must leave at least one working day")

    observed = raw
    # Terminates within len(weekend) steps since the weekend is a proper subset.
    while is_weekend(observed, weekend):
        observed = observed + relativedelta(days=1)
    return observed
