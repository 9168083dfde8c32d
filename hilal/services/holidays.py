"""Service for resolving Hijri-anchored holidays into concrete, observed dates.

Resolution is a two-tier lookup: the immutable definition gives a computed
date for a Hijri year, and an operator override for that exact
(event_id, hijri_year) replaces it.  Other years of the same event are never
affected by an override.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from datetime import date, datetime, time, tzinfo

from dateutil import tz

from hilal.domain.errors import CalendarRangeError, StorageError
from hilal.domain.models import (
    AdjustmentRule,
    Confidence,
    HolidayDefinition,
    HolidayOverride,
    ResolvedHoliday,
)
from hilal.repos.memory import OverrideStore
from hilal.services.adjustment import DEFAULT_WEEKEND, adjust
from hilal.services.calendar import (
    CalendarConverter,
    TabularConverter,
    next_occurrence,
    occurrence_in,
)

logger = logging.getLogger(__name__)


def classify_confidence(
    *,
    is_overridden: bool,
    is_moon_sighted: bool,
    hijri_year: int,
    current_hijri_year: int,
    out_of_range: bool = False,
) -> Confidence:
    """An override always wins; otherwise distance and month type decide."""
    if is_overridden:
        return Confidence.CONFIRMED
    if out_of_range:
        return Confidence.TENTATIVE
    years_out = hijri_year - current_hijri_year
    if years_out > 1:
        return Confidence.TENTATIVE
    if not is_moon_sighted and years_out <= 0:
        return Confidence.CONFIRMED
    return Confidence.ESTIMATED


class HolidayResolver:
    """Combines the calendar converter, override store and adjustment rule.

    Pure apart from reading the override store: identical ``reference_now``
    and override state always produce identical output.
    """

    def __init__(
        self,
        override_store: OverrideStore,
        zone: tzinfo | None = None,
        weekend_days: Collection[int] = DEFAULT_WEEKEND,
        rule: AdjustmentRule = AdjustmentRule.SMART,
        converter: CalendarConverter | None = None,
        fallback: TabularConverter | None = None,
    ) -> None:
        self.override_store = override_store
        self.zone = zone or tz.gettz("Asia/Riyadh")
        self.weekend_days = frozenset(weekend_days)
        self.rule = rule
        self.converter = converter or CalendarConverter()
        self.fallback = fallback or TabularConverter()

    async def resolve(
        self, definition: HolidayDefinition, reference_now: datetime
    ) -> ResolvedHoliday:
        """Resolve the next occurrence of *definition* after *reference_now*.

        Raises ``CalendarRangeError`` only when even the tabular fallback
        cannot place the date.
        """
        today = self._local_date(reference_now)
        try:
            occurrence = next_occurrence(definition, today, self.converter)
            current_year = self.converter.gregorian_to_hijri(today).year
            out_of_range = False
        except CalendarRangeError as exc:
            logger.warning(
                "Umm al-Qura range exceeded for %s (%s); using tabular calendar",
                definition.event_id,
                exc,
            )
            occurrence = next_occurrence(definition, today, self.fallback)
            current_year = self.fallback.gregorian_to_hijri(today).year
            out_of_range = True

        return await self._build(
            definition,
            occurrence.hijri_year,
            occurrence.raw_date,
            current_year,
            out_of_range,
        )

    async def resolve_year(
        self,
        definition: HolidayDefinition,
        hijri_year: int,
        reference_now: datetime,
    ) -> ResolvedHoliday:
        """Resolve *definition* for an explicit Hijri year."""
        today = self._local_date(reference_now)
        try:
            raw_date = occurrence_in(definition, hijri_year, self.converter)
            current_year = self.converter.gregorian_to_hijri(today).year
            out_of_range = False
        except CalendarRangeError as exc:
            logger.warning(
                "Umm al-Qura range exceeded for %s/%d (%s); using tabular calendar",
                definition.event_id,
                hijri_year,
                exc,
            )
            raw_date = occurrence_in(definition, hijri_year, self.fallback)
            current_year = self.fallback.gregorian_to_hijri(today).year
            out_of_range = True
        return await self._build(
            definition, hijri_year, raw_date, current_year, out_of_range
        )

    async def list_upcoming(
        self,
        definitions: Iterable[HolidayDefinition],
        reference_now: datetime,
        horizon_years: int = 1,
    ) -> list[ResolvedHoliday]:
        """Upcoming occurrences of every definition within *horizon_years*
        Hijri years, ordered by observed date then event id."""
        resolved: list[ResolvedHoliday] = []
        for definition in definitions:
            try:
                first = await self.resolve(definition, reference_now)
                resolved.append(first)
                for offset in range(1, horizon_years):
                    resolved.append(
                        await self.resolve_year(
                            definition, first.hijri_year + offset, reference_now
                        )
                    )
            except CalendarRangeError:
                logger.exception("Cannot place %s on any calendar", definition.event_id)
        return sorted(resolved, key=lambda h: (h.observed_date, h.event_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _local_date(self, instant: datetime) -> date:
        return instant.astimezone(self.zone).date()

    def _local_midnight(self, value: date) -> datetime:
        return tz.resolve_imaginary(datetime.combine(value, time(0), tzinfo=self.zone))

    async def _lookup_override(
        self, event_id: str, hijri_year: int
    ) -> HolidayOverride | None:
        try:
            return await self.override_store.get(event_id, hijri_year)
        except StorageError:
            logger.warning(
                "Override lookup failed for %s/%d; using computed date",
                event_id,
                hijri_year,
                exc_info=True,
            )
            return None

    async def _build(
        self,
        definition: HolidayDefinition,
        hijri_year: int,
        raw_date: date,
        current_year: int,
        out_of_range: bool,
    ) -> ResolvedHoliday:
        calculated = self._local_midnight(raw_date)
        override = await self._lookup_override(definition.event_id, hijri_year)
        raw = override.date.astimezone(self.zone) if override else calculated
        confidence = classify_confidence(
            is_overridden=override is not None,
            is_moon_sighted=definition.is_moon_sighted,
            hijri_year=hijri_year,
            current_hijri_year=current_year,
            out_of_range=out_of_range,
        )
        return ResolvedHoliday(
            event_id=definition.event_id,
            name_en=definition.name_en,
            name_ar=definition.name_ar,
            icon=definition.icon,
            theme=definition.theme,
            category=definition.category,
            hijri_day=definition.hijri_day,
            hijri_month=definition.hijri_month,
            hijri_year=hijri_year,
            calculated_date=calculated,
            raw_date=raw,
            observed_date=adjust(raw, self.rule, self.weekend_days),
            confidence=confidence,
            is_overridden=override is not None,
            is_hijri_derived=definition.is_moon_sighted,
            override_reason=override.reason if override else None,
        )
