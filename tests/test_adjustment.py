"""Tests for the weekend adjustment rule."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from dateutil import tz
from dateutil.rrule import SA, SU

from hilal.domain.models import AdjustmentRule
from hilal.services.adjustment import adjust, is_weekend

RIYADH = tz.gettz("Asia/Riyadh")


def _local(*args) -> datetime:
    return datetime(*args, tzinfo=RIYADH)


def test_none_never_moves():
    friday = _local(2025, 6, 6)
    assert adjust(friday, AdjustmentRule.NONE) == friday


def test_smart_moves_friday_and_saturday_to_sunday():
    assert adjust(_local(2025, 6, 6), AdjustmentRule.SMART) == _local(2025, 6, 8)
    assert adjust(_local(2025, 3, 1), AdjustmentRule.SMART) == _local(2025, 3, 2)


def test_smart_leaves_working_days_alone():
    wednesday = _local(2024, 4, 10)
    assert adjust(wednesday, AdjustmentRule.SMART) == wednesday


def test_smart_keeps_wall_clock_time():
    observed = adjust(_local(2025, 6, 6, 18, 30), AdjustmentRule.SMART)
    assert (observed.hour, observed.minute) == (18, 30)
    assert observed.tzinfo is RIYADH


def test_custom_weekend():
    weekend = {SA.weekday, SU.weekday}
    saturday = _local(2025, 3, 1)
    assert adjust(saturday, AdjustmentRule.SMART, weekend) == _local(2025, 3, 3)


def test_smart_never_returns_a_weekend_day():
    start = _local(2025, 1, 1)
    for offset in range(21):
        observed = adjust(start + timedelta(days=offset), AdjustmentRule.SMART)
        assert not is_weekend(observed)


def test_full_week_weekend_is_rejected():
    with pytest.raises(ValueError):
        adjust(_local(2025, 1, 1), AdjustmentRule.SMART, set(range(7)))
