"""Tests for holiday resolution: overrides, confidence tiers and adjustment."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from dateutil import tz

from hilal.domain.catalog import CATEGORY_META, SAUDI_HOLIDAYS, format_hijri_date, get_holiday
from hilal.domain.errors import StorageError
from hilal.domain.models import (
    AdjustmentRule,
    Confidence,
    HijriMonth,
    HolidayCategory,
)
from hilal.repos.memory import OverrideStore
from hilal.services.holidays import HolidayResolver, classify_confidence

RIYADH = tz.gettz("Asia/Riyadh")
# Six months before Eid al-Fitr 1445 (2024-04-10).
_NOW = datetime(2023, 10, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store():
    return OverrideStore()


@pytest.fixture()
def resolver(store):
    return HolidayResolver(store, zone=RIYADH)


class BrokenOverrideStore(OverrideStore):
    async def get(self, event_id, hijri_year):
        raise StorageError("disk unavailable")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_every_category_has_metadata():
    assert set(CATEGORY_META) == set(HolidayCategory)


def test_catalog_ids_are_unique():
    ids = [h.event_id for h in SAUDI_HOLIDAYS]
    assert len(ids) == len(set(ids)) == 4


def test_format_hijri_date():
    assert format_hijri_date(1, HijriMonth.SHAWWAL, 1445) == "1 شوال 1445"


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "overridden, moon, year, current, out_of_range, expected",
    [
        (True, True, 1450, 1445, False, Confidence.CONFIRMED),
        (True, False, 1445, 1445, True, Confidence.CONFIRMED),
        (False, True, 1445, 1445, False, Confidence.ESTIMATED),
        (False, False, 1445, 1445, False, Confidence.CONFIRMED),
        (False, False, 1446, 1445, False, Confidence.ESTIMATED),
        (False, True, 1447, 1445, False, Confidence.TENTATIVE),
        (False, False, 1445, 1445, True, Confidence.TENTATIVE),
    ],
)
def test_classify_confidence(overridden, moon, year, current, out_of_range, expected):
    assert (
        classify_confidence(
            is_overridden=overridden,
            is_moon_sighted=moon,
            hijri_year=year,
            current_hijri_year=current,
            out_of_range=out_of_range,
        )
        == expected
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_without_override_is_estimated(resolver):
    resolved = await resolver.resolve(get_holiday("eid-fitr"), _NOW)

    assert resolved.hijri_year == 1445
    assert resolved.raw_date == datetime(2024, 4, 10, tzinfo=RIYADH)
    assert resolved.observed_date == resolved.raw_date
    assert resolved.confidence == Confidence.ESTIMATED
    assert resolved.is_overridden is False
    assert resolved.is_hijri_derived is True


@pytest.mark.asyncio
async def test_override_then_clear(resolver, store):
    eid = get_holiday("eid-fitr")
    override_date = datetime(2024, 4, 9, tzinfo=RIYADH)
    await store.set("eid-fitr", 1445, override_date, "Moon sighted early")

    # One Hijri month after the first resolution.
    later = datetime(2023, 11, 10, 12, 0, tzinfo=timezone.utc)
    resolved = await resolver.resolve(eid, later)
    assert resolved.is_overridden is True
    assert resolved.confidence == Confidence.CONFIRMED
    assert resolved.raw_date == override_date
    assert resolved.observed_date == override_date
    assert resolved.calculated_date == datetime(2024, 4, 10, tzinfo=RIYADH)
    assert resolved.override_reason == "Moon sighted early"

    assert await store.clear("eid-fitr", 1445) is True
    reverted = await resolver.resolve(eid, later)
    assert reverted.is_overridden is False
    assert reverted.raw_date == datetime(2024, 4, 10, tzinfo=RIYADH)


@pytest.mark.asyncio
async def test_override_exists_follows_set_and_clear(store):
    assert await store.exists("eid-adha", 1446) is False

    await store.set("eid-adha", 1446, datetime(2025, 6, 6, tzinfo=RIYADH))
    await store.set("eid-adha", 1446, datetime(2025, 6, 5, tzinfo=RIYADH))
    assert await store.exists("eid-adha", 1446) is True
    assert await store.exists("eid-adha", 1447) is False
    assert await store.exists("eid-fitr", 1446) is False

    assert await store.clear("eid-adha", 1446) is True
    assert await store.exists("eid-adha", 1446) is False
    assert await store.clear("eid-adha", 1446) is False


@pytest.mark.asyncio
async def test_override_is_adjusted_like_a_computed_date(resolver, store):
    # A Friday override is still observed on the next working day.
    await store.set("eid-fitr", 1445, datetime(2024, 4, 12, tzinfo=RIYADH))
    resolved = await resolver.resolve(get_holiday("eid-fitr"), _NOW)
    assert resolved.observed_date == datetime(2024, 4, 14, tzinfo=RIYADH)


@pytest.mark.asyncio
async def test_override_only_affects_its_own_year(resolver, store):
    await store.set("eid-fitr", 1446, datetime(2025, 3, 31, tzinfo=RIYADH))
    resolved = await resolver.resolve(get_holiday("eid-fitr"), _NOW)
    assert resolved.hijri_year == 1445
    assert resolved.is_overridden is False


@pytest.mark.asyncio
async def test_weekend_holiday_is_observed_on_sunday(resolver):
    # 1 Ramadan 1446 falls on Saturday 2025-03-01.
    resolved = await resolver.resolve(
        get_holiday("ramadan"), datetime(2024, 12, 1, tzinfo=timezone.utc)
    )
    assert resolved.raw_date == datetime(2025, 3, 1, tzinfo=RIYADH)
    assert resolved.observed_date == datetime(2025, 3, 2, tzinfo=RIYADH)
    assert resolved.is_adjusted is True


@pytest.mark.asyncio
async def test_rule_none_keeps_raw_date(store):
    resolver = HolidayResolver(store, zone=RIYADH, rule=AdjustmentRule.NONE)
    resolved = await resolver.resolve(
        get_holiday("ramadan"), datetime(2024, 12, 1, tzinfo=timezone.utc)
    )
    assert resolved.observed_date == resolved.raw_date


@pytest.mark.asyncio
async def test_far_year_is_tentative(resolver):
    resolved = await resolver.resolve_year(get_holiday("eid-fitr"), 1448, _NOW)
    assert resolved.confidence == Confidence.TENTATIVE


@pytest.mark.asyncio
async def test_beyond_table_range_falls_back_to_tabular(resolver):
    resolved = await resolver.resolve(
        get_holiday("eid-fitr"), datetime(2078, 6, 1, tzinfo=timezone.utc)
    )
    assert resolved.confidence == Confidence.TENTATIVE
    assert resolved.raw_date > datetime(2078, 6, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_storage_failure_falls_back_to_computed_date():
    resolver = HolidayResolver(BrokenOverrideStore(), zone=RIYADH)
    resolved = await resolver.resolve(get_holiday("eid-fitr"), _NOW)
    assert resolved.is_overridden is False
    assert resolved.raw_date == datetime(2024, 4, 10, tzinfo=RIYADH)


@pytest.mark.asyncio
async def test_list_upcoming_is_ordered(resolver):
    upcoming = await resolver.list_upcoming(SAUDI_HOLIDAYS, _NOW)
    assert {h.event_id for h in upcoming} == {h.event_id for h in SAUDI_HOLIDAYS}
    keys = [(h.observed_date, h.event_id) for h in upcoming]
    assert keys == sorted(keys)
    assert all(h.observed_date > _NOW for h in upcoming)


@pytest.mark.asyncio
async def test_list_upcoming_horizon(resolver):
    upcoming = await resolver.list_upcoming(SAUDI_HOLIDAYS, _NOW, horizon_years=2)
    assert len(upcoming) == 8
    fitr_years = sorted(h.hijri_year for h in upcoming if h.event_id == "eid-fitr")
    assert fitr_years == [1445, 1446]


@pytest.mark.asyncio
async def test_resolution_is_repeatable(resolver, store):
    await store.set("eid-adha", 1445, datetime(2024, 6, 16, tzinfo=RIYADH))
    first = await resolver.list_upcoming(SAUDI_HOLIDAYS, _NOW)
    second = await resolver.list_upcoming(SAUDI_HOLIDAYS, _NOW)
    assert first == second
