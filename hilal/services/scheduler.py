"""Reconciles a countdown's reminder plan against the live notification handles.

Per countdown the schedule moves ``unscheduled -> scheduled ->
(rescheduled | cancelled)``.  Callers must serialise operations for the same
countdown; the scheduler takes no locks of its own.  The handle repository is
re-read on every call and is the only record of what is live.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, tzinfo

from hilal.domain.errors import NotificationError, SchedulingPermissionError, StorageError
from hilal.domain.models import (
    Countdown,
    NotificationPayload,
    PlanEntry,
    ReminderKind,
    ScheduledNotificationHandle,
    ScheduleResult,
    ScheduleState,
)
from hilal.repos.memory import NotificationHandleRepository
from hilal.services.adjustment import DEFAULT_WEEKEND
from hilal.services.calendar import CalendarConverter
from hilal.services.notifier import Notifier
from hilal.services.reminders import build_plan

logger = logging.getLogger(__name__)


def build_payload(countdown: Countdown, entry: PlanEntry) -> NotificationPayload:
    prefix = f"{countdown.icon} " if countdown.icon else ""
    option = entry.option
    if option.kind == ReminderKind.DAY_OF_MONTH:
        title = f"{prefix}Reminder: {countdown.title}"
        body = f"Monthly reminder (day {option.day})"
    elif option.days == 0:
        title = f"{prefix}{countdown.title}"
        body = "The countdown has ended"
    else:
        title = f"{prefix}Reminder: {countdown.title}"
        body = f"{option.days} day{'s' if option.days != 1 else ''} left"
    return NotificationPayload(
        countdown_id=countdown.id,
        offset_key=entry.offset_key,
        title=title,
        body=body,
        fire_at=entry.fire_at,
    )


class NotificationScheduler:
    def __init__(
        self,
        notifier: Notifier,
        handle_repo: NotificationHandleRepository,
        zone: tzinfo,
        weekend_days: Collection[int] = DEFAULT_WEEKEND,
        converter: CalendarConverter | None = None,
    ) -> None:
        self.notifier = notifier
        self.handle_repo = handle_repo
        self.zone = zone
        self.weekend_days = frozenset(weekend_days)
        self.converter = converter or CalendarConverter()

    def plan(self, countdown: Countdown, reference_now: datetime) -> list[PlanEntry]:
        return build_plan(
            countdown, reference_now, self.zone, self.weekend_days, self.converter
        )

    async def schedule_all(
        self, countdown: Countdown, reference_now: datetime
    ) -> ScheduleResult:
        """Schedule every plan entry, replacing any handle already live for it.

        Without notification permission nothing is cancelled or scheduled and
        the live handles stay as they were.
        """
        result = ScheduleResult(countdown_id=countdown.id)
        plan = self._plan_or_fail(countdown, reference_now, result)
        if plan is None or (plan and not await self._permitted(countdown.id, result)):
            return result
        planned = {entry.offset_key for entry in plan}

        for handle in await self.handle_repo.list_for_countdown(countdown.id):
            if handle.offset_key not in planned:
                await self._cancel(handle, result)

        for entry in plan:
            existing = await self.handle_repo.get(countdown.id, entry.offset_key)
            # Cancel must finish before the replacement is requested.
            if existing is not None and not await self._cancel(existing, result):
                continue
            await self._schedule(countdown, entry, result)
            if result.permission_denied:
                break

        await self._finish(countdown.id, result, ScheduleState.SCHEDULED)
        return result

    async def reschedule(
        self, countdown: Countdown, reference_now: datetime
    ) -> ScheduleResult:
        """Bring live handles in line with the current plan.

        Handles whose offset key and fire time are unchanged are left alone;
        the rest are cancelled and, when still planned, scheduled again.
        """
        result = ScheduleResult(countdown_id=countdown.id)
        plan = self._plan_or_fail(countdown, reference_now, result)
        if plan is None:
            return result
        planned = {entry.offset_key: entry for entry in plan}
        live = {
            h.offset_key: h
            for h in await self.handle_repo.list_for_countdown(countdown.id)
        }
        needs_schedule = any(
            entry.offset_key not in live
            or live[entry.offset_key].fire_at != entry.fire_at
            for entry in plan
        )
        if needs_schedule and not await self._permitted(countdown.id, result):
            return result

        for key, handle in live.items():
            entry = planned.get(key)
            if entry is None or entry.fire_at != handle.fire_at:
                await self._cancel(handle, result)

        for entry in plan:
            handle = live.get(entry.offset_key)
            if handle is not None and handle.fire_at == entry.fire_at:
                result.unchanged.append(entry.offset_key)
                result.handle_ids.append(handle.external_handle)
                continue
            if entry.offset_key in result.failed:
                continue
            await self._schedule(countdown, entry, result)
            if result.permission_denied:
                break

        previous = await self.handle_repo.get_state(countdown.id)
        state = (
            ScheduleState.RESCHEDULED
            if previous in (ScheduleState.SCHEDULED, ScheduleState.RESCHEDULED)
            else ScheduleState.SCHEDULED
        )
        await self._finish(countdown.id, result, state)
        return result

    async def cancel_all(self, countdown_id: str) -> bool:
        """Cancel every live handle; True when nothing is left behind."""
        handles = await self.handle_repo.list_for_countdown(countdown_id)
        state = await self.handle_repo.get_state(countdown_id)
        if not handles and state in (ScheduleState.UNSCHEDULED, ScheduleState.CANCELLED):
            return True

        result = ScheduleResult(countdown_id=countdown_id)
        for handle in handles:
            await self._cancel(handle, result)
        await self.handle_repo.set_state(countdown_id, ScheduleState.CANCELLED)
        logger.info(
            "Cancelled %d notification(s) for countdown %s",
            len(result.cancelled),
            countdown_id,
        )
        return not result.failed

    async def forget_delivered(self, external_handle: str) -> ScheduledNotificationHandle | None:
        """Drop the record of a handle the platform has already delivered."""
        handle = await self.handle_repo.find_by_external(external_handle)
        if handle is not None:
            await self.handle_repo.delete(handle.countdown_id, handle.offset_key)
        return handle

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _plan_or_fail(
        self, countdown: Countdown, reference_now: datetime, result: ScheduleResult
    ) -> list[PlanEntry] | None:
        try:
            return self.plan(countdown, reference_now)
        except ValueError as exc:
            # CalendarRangeError included; live handles are left as they are.
            logger.error("Could not plan reminders for countdown %s: %s", countdown.id, exc)
            for option in countdown.reminders:
                result.failed[option.offset_key] = f"planning failed: {exc}"
            return None

    async def _permitted(self, countdown_id: str, result: ScheduleResult) -> bool:
        if await self.notifier.has_permission():
            return True
        logger.warning("Notification permission denied for countdown %s", countdown_id)
        result.permission_denied = True
        return False

    async def _cancel(
        self, handle: ScheduledNotificationHandle, result: ScheduleResult
    ) -> bool:
        try:
            await self.notifier.cancel(handle.external_handle)
        except NotificationError as exc:
            logger.warning(
                "Could not cancel %s for countdown %s: %s",
                handle.offset_key,
                handle.countdown_id,
                exc,
            )
            result.failed[handle.offset_key] = f"cancel failed: {exc}"
            return False
        await self.handle_repo.delete(handle.countdown_id, handle.offset_key)
        result.cancelled.append(handle.offset_key)
        return True

    async def _schedule(
        self, countdown: Countdown, entry: PlanEntry, result: ScheduleResult
    ) -> bool:
        payload = build_payload(countdown, entry)
        try:
            external = await self.notifier.schedule(payload, entry.fire_at)
        except SchedulingPermissionError:
            logger.warning("Notification permission denied for countdown %s", countdown.id)
            result.permission_denied = True
            return False
        except NotificationError as exc:
            logger.warning(
                "Could not schedule %s for countdown %s: %s",
                entry.offset_key,
                countdown.id,
                exc,
            )
            result.failed[entry.offset_key] = str(exc)
            return False

        handle = ScheduledNotificationHandle(
            countdown_id=countdown.id,
            offset_key=entry.offset_key,
            external_handle=external,
            fire_at=entry.fire_at,
        )
        try:
            await self.handle_repo.put(handle)
        except StorageError as exc:
            # Unrecorded handles could never be cancelled; withdraw it.
            logger.error(
                "Could not record %s for countdown %s: %s",
                entry.offset_key,
                countdown.id,
                exc,
            )
            try:
                await self.notifier.cancel(external)
            except NotificationError:
                logger.exception("Orphaned notification handle %s", external)
            result.failed[entry.offset_key] = f"storage failed: {exc}"
            return False

        result.scheduled.append(entry.offset_key)
        result.handle_ids.append(external)
        return True

    async def _finish(
        self, countdown_id: str, result: ScheduleResult, state: ScheduleState
    ) -> None:
        if result.permission_denied:
            return
        await self.handle_repo.set_state(countdown_id, state)
        if result.failed:
            logger.warning(
                "Countdown %s: %d scheduled, %d failed (%s)",
                countdown_id,
                len(result.handle_ids),
                len(result.failed),
                ", ".join(sorted(result.failed)),
            )
        else:
            logger.info(
                "Countdown %s: %d scheduled, %d unchanged, %d cancelled",
                countdown_id,
                len(result.scheduled),
                len(result.unchanged),
                len(result.cancelled),
            )
