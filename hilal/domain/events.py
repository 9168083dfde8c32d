"""Domain events emitted during the countdown lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import AwareDatetime, BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    # Reference instant handlers plan against; /tick passes its simulated clock.
    occurred_at: AwareDatetime = Field(default_factory=_utcnow)


class CountdownCreated(DomainEvent):
    """Fired when a new Countdown is persisted."""

    countdown_id: str


class CountdownUpdated(DomainEvent):
    """Fired after a stored Countdown changed; lists the fields that differ."""

    countdown_id: str
    changed_fields: list[str]


class CountdownDeleted(DomainEvent):
    countdown_id: str


class HolidayOverrideChanged(DomainEvent):
    """Fired when an override for (event_id, hijri_year) is set or cleared."""

    event_id: str
    hijri_year: int
    cleared: bool = False


class NotificationDelivered(DomainEvent):
    """Fired when the notifier delivers a scheduled reminder (via /tick)."""

    countdown_id: str
    offset_key: str
    external_handle: str
