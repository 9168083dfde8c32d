"""Domain event handlers that keep notifications in step with countdowns."""

from __future__ import annotations

import logging

from hilal.domain.bus import EventBus
from hilal.domain.catalog import get_holiday
from hilal.domain.errors import StorageError
from hilal.domain.events import (
    CountdownCreated,
    CountdownDeleted,
    CountdownUpdated,
    HolidayOverrideChanged,
    NotificationDelivered,
)
from hilal.domain.models import ScheduleResult
from hilal.repos.memory import CountdownRepository
from hilal.services.holidays import HolidayResolver
from hilal.services.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)

# Countdown fields whose change alters the reminder plan.
RESCHEDULE_FIELDS = frozenset(
    {
        "target_date",
        "reminders",
        "recurrence_type",
        "calendar_type",
        "day_of_month",
        "adjustment_rule",
    }
)


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the stores and scheduler."""

    def __init__(
        self,
        bus: EventBus,
        countdown_repo: CountdownRepository,
        resolver: HolidayResolver,
        scheduler: NotificationScheduler,
    ) -> None:
        self.bus = bus
        self.countdown_repo = countdown_repo
        self.resolver = resolver
        self.scheduler = scheduler
        # Most recent schedule outcome per countdown, read back by the HTTP layer.
        self.results: dict[str, ScheduleResult] = {}
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(CountdownCreated, self.on_countdown_created)
        self.bus.subscribe(CountdownUpdated, self.on_countdown_updated)
        self.bus.subscribe(CountdownDeleted, self.on_countdown_deleted)
        self.bus.subscribe(HolidayOverrideChanged, self.on_holiday_override_changed)
        self.bus.subscribe(NotificationDelivered, self.on_notification_delivered)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def on_countdown_created(self, event: CountdownCreated) -> None:
        countdown = self.countdown_repo.get(event.countdown_id)
        if countdown is None:
            return
        try:
            result = await self.scheduler.schedule_all(countdown, event.occurred_at)
        except StorageError:
            logger.error("Handle table unavailable; %s not scheduled", countdown.id, exc_info=True)
            return
        self.results[countdown.id] = result

    async def on_countdown_updated(self, event: CountdownUpdated) -> None:
        if not RESCHEDULE_FIELDS.intersection(event.changed_fields):
            return
        countdown = self.countdown_repo.get(event.countdown_id)
        if countdown is None:
            return
        try:
            result = await self.scheduler.reschedule(countdown, event.occurred_at)
        except StorageError:
            logger.error("Handle table unavailable; %s not rescheduled", countdown.id, exc_info=True)
            return
        self.results[countdown.id] = result

    async def on_countdown_deleted(self, event: CountdownDeleted) -> None:
        self.results.pop(event.countdown_id, None)
        try:
            await self.scheduler.cancel_all(event.countdown_id)
        except StorageError:
            logger.error(
                "Handle table unavailable; notifications for %s not cancelled",
                event.countdown_id,
                exc_info=True,
            )

    async def on_holiday_override_changed(self, event: HolidayOverrideChanged) -> None:
        definition = get_holiday(event.event_id)
        if definition is None:
            return

        resolved = await self.resolver.resolve(definition, event.occurred_at)
        if resolved.hijri_year != event.hijri_year:
            # The override is for a year no countdown is tracking yet.
            return

        for countdown in self.countdown_repo.list_for_holiday(event.event_id):
            if countdown.target_date <= event.occurred_at:
                continue
            if countdown.target_date == resolved.observed_date:
                continue
            self.countdown_repo.replace(
                countdown.model_copy(
                    update={
                        "anchor_date": resolved.raw_date,
                        "target_date": resolved.observed_date,
                    }
                )
            )
            logger.info(
                "Retargeted countdown %s to %s after override of %s/%d",
                countdown.id,
                resolved.observed_date.date().isoformat(),
                event.event_id,
                event.hijri_year,
            )
            await self.bus.publish(
                CountdownUpdated(
                    countdown_id=countdown.id,
                    changed_fields=["target_date"],
                    occurred_at=event.occurred_at,
                )
            )

    async def on_notification_delivered(self, event: NotificationDelivered) -> None:
        try:
            await self.scheduler.forget_delivered(event.external_handle)
        except StorageError:
            logger.error("Could not clear delivered handle %s", event.external_handle, exc_info=True)
            return

        countdown = self.countdown_repo.get(event.countdown_id)
        if countdown is None:
            return
        # Monthly and yearly countdowns get their next reminder planned here.
        try:
            result = await self.scheduler.reschedule(countdown, event.occurred_at)
        except StorageError:
            logger.error("Handle table unavailable; %s not rescheduled", countdown.id, exc_info=True)
            return
        self.results[countdown.id] = result
