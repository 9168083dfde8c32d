"""FastAPI application and the public functions of the holiday countdown service."""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone

from dateutil import tz
from fastapi import FastAPI, HTTPException
from pydantic import ValidationError

from hilal.config import configure_logging, load_settings
from hilal.domain.bus import EventBus
from hilal.domain.catalog import SAUDI_HOLIDAYS, get_holiday
from hilal.domain.errors import CalendarRangeError, StorageError
from hilal.domain.events import (
    CountdownCreated,
    CountdownDeleted,
    CountdownUpdated,
    HolidayOverrideChanged,
    NotificationDelivered,
)
from hilal.domain.handlers import HandlerRegistry
from hilal.domain.models import (
    AdjustmentRule,
    CalendarType,
    Countdown,
    CountdownCreateRequest,
    CountdownEnvelope,
    CountdownNotifications,
    CountdownUpdateRequest,
    HijriDate,
    HolidayDefinition,
    HolidayOverride,
    HolidayOverrideRequest,
    ReminderKind,
    ReminderOption,
    ResolvedHoliday,
    ScheduleResult,
)
from hilal.repos.memory import (
    CountdownRepository,
    NotificationHandleRepository,
    OverrideStore,
)
from hilal.services.adjustment import adjust
from hilal.services.calendar import CalendarConverter
from hilal.services.holidays import HolidayResolver
from hilal.services.notifier import InMemoryNotifier
from hilal.services.recurrence import advance_if_due
from hilal.services.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Hilal Countdown Service")

# ── Singletons (built from settings at import time) ────────────────
event_bus = EventBus()
countdown_repo = CountdownRepository()
override_store = OverrideStore()
handle_repo = NotificationHandleRepository()
notifier = InMemoryNotifier()
converter = CalendarConverter()

resolver = HolidayResolver(
    override_store,
    zone=settings.zone,
    weekend_days=settings.weekend_days,
    rule=settings.holiday_adjustment_rule,
    converter=converter,
)
scheduler = NotificationScheduler(
    notifier,
    handle_repo,
    zone=settings.zone,
    weekend_days=settings.weekend_days,
    converter=converter,
)
handler_registry = HandlerRegistry(
    bus=event_bus,
    countdown_repo=countdown_repo,
    resolver=resolver,
    scheduler=scheduler,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime | None) -> datetime:
    if value is None:
        return _now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Public functions ──────────────────────────────────────────────────


async def get_upcoming_saudi_holidays(
    reference_now: datetime | None = None,
) -> list[ResolvedHoliday]:
    """Every catalog holiday within the configured horizon, soonest first."""
    return await resolver.list_upcoming(
        SAUDI_HOLIDAYS, _as_aware(reference_now), settings.horizon_years
    )


async def resolve_holiday(
    definition: HolidayDefinition, reference_now: datetime | None = None
) -> ResolvedHoliday:
    return await resolver.resolve(definition, _as_aware(reference_now))


async def set_holiday_override(
    event_id: str,
    hijri_year: int,
    date: datetime,
    reason: str | None = None,
) -> bool:
    if get_holiday(event_id) is None:
        logger.warning("Refusing override for unknown holiday %s", event_id)
        return False
    try:
        await override_store.set(event_id, hijri_year, date, reason)
    except StorageError:
        logger.error("Could not store override %s/%d", event_id, hijri_year, exc_info=True)
        return False
    logger.info("Override set for %s/%d: %s", event_id, hijri_year, date.isoformat())
    await event_bus.publish(HolidayOverrideChanged(event_id=event_id, hijri_year=hijri_year))
    return True


async def clear_holiday_override(event_id: str, hijri_year: int) -> bool:
    try:
        removed = await override_store.clear(event_id, hijri_year)
    except StorageError:
        logger.error("Could not clear override %s/%d", event_id, hijri_year, exc_info=True)
        return False
    if removed:
        logger.info("Override cleared for %s/%d", event_id, hijri_year)
        await event_bus.publish(
            HolidayOverrideChanged(event_id=event_id, hijri_year=hijri_year, cleared=True)
        )
    return True


async def schedule_all_notifications_for_countdown(
    countdown: Countdown, reference_now: datetime | None = None
) -> list[str]:
    """Live handle ids for *countdown*; empty when permission is denied."""
    try:
        result = await scheduler.schedule_all(countdown, _as_aware(reference_now))
    except StorageError:
        logger.error("Could not schedule countdown %s", countdown.id, exc_info=True)
        return []
    return [] if result.permission_denied else result.handle_ids


async def cancel_countdown_notifications(countdown_id: str) -> None:
    try:
        await scheduler.cancel_all(countdown_id)
    except StorageError:
        logger.error("Could not cancel countdown %s", countdown_id, exc_info=True)


async def reschedule_countdown_notifications(
    countdown: Countdown, reference_now: datetime | None = None
) -> list[str]:
    try:
        result = await scheduler.reschedule(countdown, _as_aware(reference_now))
    except StorageError:
        logger.error("Could not reschedule countdown %s", countdown.id, exc_info=True)
        return []
    return [] if result.permission_denied else result.handle_ids


# ── Helpers ───────────────────────────────────────────────────────────


def _hijri_midnight(hijri: HijriDate) -> datetime:
    try:
        gregorian = converter.hijri_to_gregorian(hijri.day, hijri.month, hijri.year)
    except CalendarRangeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return tz.resolve_imaginary(datetime.combine(gregorian, time(0), tzinfo=settings.zone))


def _with_reminder_defaults(options: list[ReminderOption] | None) -> list[ReminderOption]:
    if options is None:
        return [ReminderOption.days_before(d) for d in settings.default_reminder_days]
    at = settings.monthly_reminder_time
    return [
        option.model_copy(update={"hour": at.hour, "minute": at.minute})
        if option.kind == ReminderKind.DAY_OF_MONTH
        and not {"hour", "minute"} & option.model_fields_set
        else option
        for option in options
    ]


def _observed(anchor: datetime, rule: AdjustmentRule) -> datetime:
    return adjust(anchor.astimezone(settings.zone), rule, settings.weekend_days)


def _validated(data: dict) -> Countdown:
    try:
        return Countdown.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=[error["msg"] for error in exc.errors()]
        ) from exc


def _get_countdown_or_404(countdown_id: str) -> Countdown:
    countdown = countdown_repo.get(countdown_id)
    if countdown is None:
        raise HTTPException(status_code=404, detail="Countdown not found")
    return countdown


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/holidays", response_model=list[ResolvedHoliday])
async def list_holidays(now: datetime | None = None) -> list[ResolvedHoliday]:
    """Upcoming Saudi holidays ordered by observed date."""
    return await get_upcoming_saudi_holidays(now)


@app.get("/holidays/overrides", response_model=list[HolidayOverride])
async def list_overrides() -> list[HolidayOverride]:
    return await override_store.list()


@app.get("/holidays/{event_id}", response_model=ResolvedHoliday)
async def get_holiday_route(
    event_id: str, hijri_year: int | None = None, now: datetime | None = None
) -> ResolvedHoliday:
    """Resolve one holiday: its next occurrence, or a given Hijri year."""
    definition = get_holiday(event_id)
    if definition is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    if hijri_year is None:
        return await resolve_holiday(definition, now)
    try:
        return await resolver.resolve_year(definition, hijri_year, _as_aware(now))
    except CalendarRangeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.put("/holidays/{event_id}/overrides/{hijri_year}", response_model=HolidayOverride)
async def put_override(
    event_id: str, hijri_year: int, body: HolidayOverrideRequest
) -> HolidayOverride:
    if get_holiday(event_id) is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    if not await set_holiday_override(event_id, hijri_year, body.date, body.reason):
        raise HTTPException(status_code=503, detail="Override could not be stored")
    return await override_store.get(event_id, hijri_year)


@app.delete("/holidays/{event_id}/overrides/{hijri_year}", status_code=200)
async def delete_override(event_id: str, hijri_year: int) -> dict:
    if get_holiday(event_id) is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    if not await clear_holiday_override(event_id, hijri_year):
        raise HTTPException(status_code=503, detail="Override could not be cleared")
    return {"status": "cleared"}


@app.post("/countdowns", response_model=CountdownEnvelope, status_code=201)
async def create_countdown(body: CountdownCreateRequest) -> CountdownEnvelope:
    """Create a countdown from an instant, a Hijri date or a catalog holiday."""
    now = _now()
    fields = body.model_dump(
        exclude={"target_date", "hijri_date", "reminders"}, exclude_none=True
    )

    if body.holiday_event_id is not None:
        definition = get_holiday(body.holiday_event_id)
        if definition is None:
            raise HTTPException(status_code=404, detail="Holiday not found")
        resolved = await resolve_holiday(definition, now)
        anchor = resolved.raw_date
        fields["calendar_type"] = CalendarType.HIJRI
        fields["adjustment_rule"] = resolver.rule
        fields.setdefault("icon", definition.icon)
        target = resolved.observed_date
    else:
        if body.hijri_date is not None:
            anchor = _hijri_midnight(body.hijri_date)
        else:
            anchor = body.target_date.astimezone(settings.zone)
        target = _observed(anchor, body.adjustment_rule)

    countdown = _validated(
        {
            **fields,
            "anchor_date": anchor,
            "target_date": target,
            "reminders": _with_reminder_defaults(body.reminders),
        }
    )
    countdown_repo.add(countdown)
    await event_bus.publish(CountdownCreated(countdown_id=countdown.id, occurred_at=now))
    return CountdownEnvelope(
        countdown=countdown, schedule=handler_registry.results.get(countdown.id)
    )


@app.get("/countdowns", response_model=list[Countdown])
async def list_countdowns() -> list[Countdown]:
    """Starred countdowns first, then soonest target first."""
    return countdown_repo.list_all()


@app.get("/countdowns/{countdown_id}", response_model=Countdown)
async def get_countdown(countdown_id: str) -> Countdown:
    return _get_countdown_or_404(countdown_id)


@app.patch("/countdowns/{countdown_id}", response_model=CountdownEnvelope)
async def update_countdown(
    countdown_id: str, body: CountdownUpdateRequest
) -> CountdownEnvelope:
    current = _get_countdown_or_404(countdown_id)
    changes = body.model_dump(exclude_unset=True, exclude={"hijri_date", "reminders"})
    if body.reminders is not None:
        changes["reminders"] = _with_reminder_defaults(body.reminders)

    rule = changes.get("adjustment_rule") or current.adjustment_rule
    anchor = None
    if body.hijri_date is not None:
        anchor = _hijri_midnight(body.hijri_date)
    elif body.target_date is not None:
        anchor = body.target_date.astimezone(settings.zone)
    elif "adjustment_rule" in changes:
        anchor = current.anchor_date or current.target_date
    if anchor is not None:
        changes["anchor_date"] = anchor
        changes["target_date"] = _observed(anchor, rule)

    updated = _validated({**current.model_dump(), **changes})
    changed_fields = sorted(
        name for name in changes if getattr(updated, name) != getattr(current, name)
    )
    handler_registry.results.pop(countdown_id, None)
    countdown_repo.replace(updated)
    if changed_fields:
        await event_bus.publish(
            CountdownUpdated(countdown_id=countdown_id, changed_fields=changed_fields)
        )
    return CountdownEnvelope(
        countdown=updated, schedule=handler_registry.results.get(countdown_id)
    )


@app.delete("/countdowns/{countdown_id}", status_code=200)
async def delete_countdown(countdown_id: str) -> dict:
    if not countdown_repo.delete(countdown_id):
        raise HTTPException(status_code=404, detail="Countdown not found")
    await event_bus.publish(CountdownDeleted(countdown_id=countdown_id))
    return {"status": "deleted"}


@app.post("/countdowns/{countdown_id}/star", response_model=Countdown)
async def toggle_star(countdown_id: str) -> Countdown:
    countdown = _get_countdown_or_404(countdown_id)
    updated = countdown.model_copy(update={"is_starred": not countdown.is_starred})
    countdown_repo.replace(updated)
    await event_bus.publish(
        CountdownUpdated(countdown_id=countdown_id, changed_fields=["is_starred"])
    )
    return updated


@app.get("/countdowns/{countdown_id}/notifications", response_model=CountdownNotifications)
async def list_notifications(countdown_id: str) -> CountdownNotifications:
    _get_countdown_or_404(countdown_id)
    return CountdownNotifications(
        countdown_id=countdown_id,
        state=await handle_repo.get_state(countdown_id),
        handles=await handle_repo.list_for_countdown(countdown_id),
    )


@app.post(
    "/countdowns/{countdown_id}/notifications/reschedule",
    response_model=ScheduleResult,
)
async def reschedule_notifications(
    countdown_id: str, now: datetime | None = None
) -> ScheduleResult:
    countdown = _get_countdown_or_404(countdown_id)
    try:
        result = await scheduler.reschedule(countdown, _as_aware(now))
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    handler_registry.results[countdown_id] = result
    return result


@app.post("/tick")
async def tick(now: datetime | None = None) -> dict:
    """Advance simulated time: deliver due reminders and roll recurring countdowns.

    Pass *now* as a query param to control the simulated clock.
    Defaults to ``datetime.now(timezone.utc)`` when omitted.
    """
    current_time = _as_aware(now)

    delivered: list[str] = []
    for handle, payload in await notifier.deliver_due(current_time):
        await event_bus.publish(
            NotificationDelivered(
                countdown_id=payload.countdown_id,
                offset_key=payload.offset_key,
                external_handle=handle,
                occurred_at=current_time,
            )
        )
        delivered.append(handle)

    advanced: list[str] = []
    for countdown in countdown_repo.list_all():
        try:
            updated = advance_if_due(
                countdown, current_time, settings.zone, settings.weekend_days, converter
            )
        except ValueError as exc:
            logger.error("Could not advance countdown %s: %s", countdown.id, exc)
            continue
        if updated is None:
            continue
        countdown_repo.replace(updated)
        logger.info(
            "Advanced countdown %s to %s", updated.id, updated.target_date.isoformat()
        )
        await event_bus.publish(
            CountdownUpdated(
                countdown_id=updated.id,
                changed_fields=["target_date"],
                occurred_at=current_time,
            )
        )
        advanced.append(updated.id)

    return {
        "time": current_time.isoformat(),
        "notifications_delivered": delivered,
        "countdowns_advanced": advanced,
    }
