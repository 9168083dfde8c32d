"""In-memory repositories for countdowns, holiday overrides and notification handles."""

from __future__ import annotations

from datetime import datetime, timezone

from hilal.domain.models import (
    Countdown,
    HolidayOverride,
    ScheduledNotificationHandle,
    ScheduleState,
    override_key,
)


class CountdownRepository:
    """Dict-backed store for Countdown instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Countdown] = {}

    def add(self, countdown: Countdown) -> None:
        self._store[countdown.id] = countdown

    def get(self, countdown_id: str) -> Countdown | None:
        return self._store.get(countdown_id)

    def replace(self, countdown: Countdown) -> None:
        self._store[countdown.id] = countdown

    def list_all(self) -> list[Countdown]:
        """Starred first, then soonest target first."""
        return sorted(
            self._store.values(),
            key=lambda c: (not c.is_starred, c.target_date, c.id),
        )

    def list_for_holiday(self, event_id: str) -> list[Countdown]:
        return [c for c in self._store.values() if c.holiday_event_id == event_id]

    def delete(self, countdown_id: str) -> bool:
        return self._store.pop(countdown_id, None) is not None


class OverrideStore:
    """Holiday overrides keyed by ``"{event_id}:{hijri_year}"``.

    Records are kept in their persisted shape
    ``{"date": ISO8601, "reason": str | None, "createdAt": ISO8601}``.
    Every operation is idempotent; ``set`` on an existing key replaces it.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}

    async def get(self, event_id: str, hijri_year: int) -> HolidayOverride | None:
        record = self._records.get(override_key(event_id, hijri_year))
        if record is None:
            return None
        return _override_from_record(event_id, hijri_year, record)

    async def exists(self, event_id: str, hijri_year: int) -> bool:
        return override_key(event_id, hijri_year) in self._records

    async def set(
        self,
        event_id: str,
        hijri_year: int,
        date: datetime,
        reason: str | None = None,
    ) -> HolidayOverride:
        override = HolidayOverride(
            event_id=event_id,
            hijri_year=hijri_year,
            date=date,
            reason=reason,
        )
        # Built fully before the single assignment below.
        record = {
            "date": override.date.isoformat(),
            "reason": override.reason,
            "createdAt": override.created_at.isoformat(),
        }
        self._records[override.key] = record
        return override

    async def clear(self, event_id: str, hijri_year: int) -> bool:
        return self._records.pop(override_key(event_id, hijri_year), None) is not None

    async def list(self) -> list[HolidayOverride]:
        overrides = []
        for key, record in self._records.items():
            event_id, _, year = key.rpartition(":")
            overrides.append(_override_from_record(event_id, int(year), record))
        return sorted(overrides, key=lambda o: (o.event_id, o.hijri_year))


def _override_from_record(event_id: str, hijri_year: int, record: dict) -> HolidayOverride:
    return HolidayOverride(
        event_id=event_id,
        hijri_year=hijri_year,
        date=datetime.fromisoformat(record["date"]),
        reason=record["reason"],
        created_at=datetime.fromisoformat(record["createdAt"]),
    )


class NotificationHandleRepository:
    """Live notification handles, unique per (countdown_id, offset_key)."""

    def __init__(self) -> None:
        self._handles: dict[tuple[str, str], ScheduledNotificationHandle] = {}
        self._states: dict[str, ScheduleState] = {}

    async def get(
        self, countdown_id: str, offset_key: str
    ) -> ScheduledNotificationHandle | None:
        return self._handles.get((countdown_id, offset_key))

    async def put(self, handle: ScheduledNotificationHandle) -> None:
        self._handles[(handle.countdown_id, handle.offset_key)] = handle

    async def delete(self, countdown_id: str, offset_key: str) -> None:
        self._handles.pop((countdown_id, offset_key), None)

    async def list_for_countdown(
        self, countdown_id: str
    ) -> list[ScheduledNotificationHandle]:
        return sorted(
            (h for (cid, _), h in self._handles.items() if cid == countdown_id),
            key=lambda h: (h.fire_at.astimezone(timezone.utc), h.offset_key),
        )

    async def find_by_external(
        self, external_handle: str
    ) -> ScheduledNotificationHandle | None:
        for handle in self._handles.values():
            if handle.external_handle == external_handle:
                return handle
        return None

    async def get_state(self, countdown_id: str) -> ScheduleState:
        return self._states.get(countdown_id, ScheduleState.UNSCHEDULED)

    async def set_state(self, countdown_id: str, state: ScheduleState) -> None:
        self._states[countdown_id] = state
