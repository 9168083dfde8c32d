"""Domain models for holiday resolution and countdown reminders."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import IntEnum, StrEnum

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from hilal.domain.errors import SchedulingPartialFailure, SchedulingPermissionError


class HijriMonth(IntEnum):
    MUHARRAM = 1
    SAFAR = 2
    RABI_AL_AWWAL = 3
    RABI_AL_THANI = 4
    JUMADA_AL_ULA = 5
    JUMADA_AL_THANI = 6
    RAJAB = 7
    SHABAN = 8
    RAMADAN = 9
    SHAWWAL = 10
    DHU_AL_QADAH = 11
    DHU_AL_HIJJAH = 12


# Months whose start is announced only after the crescent is sighted.
MOON_SIGHTED_MONTHS = frozenset(
    {HijriMonth.RAMADAN, HijriMonth.SHAWWAL, HijriMonth.DHU_AL_HIJJAH}
)


class HolidayCategory(StrEnum):
    RELIGIOUS = "religious"
    NATIONAL = "national"


class ThemeId(StrEnum):
    DEFAULT = "default"
    SUNSET = "sunset"
    NIGHT = "night"
    GOLD = "gold"
    RAMADAN = "ramadan"


class Confidence(StrEnum):
    CONFIRMED = "confirmed"
    ESTIMATED = "estimated"
    TENTATIVE = "tentative"


class AdjustmentRule(StrEnum):
    SMART = "smart"
    NONE = "none"


class CalendarType(StrEnum):
    GREGORIAN = "gregorian"
    HIJRI = "hijri"


class RecurrenceType(StrEnum):
    ONE_TIME = "one-time"
    YEARLY = "yearly"
    MONTHLY = "monthly"


class ReminderKind(StrEnum):
    DAYS_BEFORE = "days_before"
    DAY_OF_MONTH = "day_of_month"


class ScheduleState(StrEnum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


# Lead times a "days before" reminder may use.
DAYS_BEFORE_CHOICES = (0, 1, 2, 3, 7, 14, 30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Calendar / holiday models
# ---------------------------------------------------------------------------


class HijriDate(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int = Field(ge=1, le=30)
    month: HijriMonth
    year: int = Field(ge=1)


class HolidayDefinition(BaseModel):
    """Immutable template for a Hijri-anchored holiday."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    name_en: str
    name_ar: str
    hijri_day: int = Field(ge=1, le=30)
    hijri_month: HijriMonth
    icon: str
    theme: ThemeId = ThemeId.DEFAULT
    category: HolidayCategory = HolidayCategory.RELIGIOUS

    @property
    def is_moon_sighted(self) -> bool:
        return self.hijri_month in MOON_SIGHTED_MONTHS


class HolidayOverride(BaseModel):
    event_id: str
    hijri_year: int
    date: AwareDatetime
    reason: str | None = None
    created_at: AwareDatetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> str:
        return override_key(self.event_id, self.hijri_year)


def override_key(event_id: str, hijri_year: int) -> str:
    return f"{event_id}:{hijri_year}"


class ResolvedHoliday(BaseModel):
    event_id: str
    name_en: str
    name_ar: str
    icon: str
    theme: ThemeId
    category: HolidayCategory
    hijri_day: int
    hijri_month: HijriMonth
    hijri_year: int
    calculated_date: AwareDatetime
    raw_date: AwareDatetime
    observed_date: AwareDatetime
    confidence: Confidence
    is_overridden: bool = False
    is_hijri_derived: bool = False
    override_reason: str | None = None

    @computed_field
    @property
    def is_adjusted(self) -> bool:
        return self.observed_date != self.raw_date


# ---------------------------------------------------------------------------
# Countdowns and reminders
# ---------------------------------------------------------------------------


class ReminderOption(BaseModel):
    """A relative reminder: N days before the target, or day D of the month at H:MM.

    A bare integer is accepted as shorthand for ``days_before``.
    """

    model_config = ConfigDict(frozen=True)

    kind: ReminderKind = ReminderKind.DAYS_BEFORE
    days: int | None = None
    day: int | None = Field(default=None, ge=1, le=31)
    hour: int = Field(default=9, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

    @model_validator(mode="before")
    @classmethod
    def _from_shorthand(cls, data):
        if isinstance(data, int) and not isinstance(data, bool):
            return {"kind": ReminderKind.DAYS_BEFORE, "days": data}
        return data

    @model_validator(mode="after")
    def _check_kind(self) -> ReminderOption:
        if self.kind == ReminderKind.DAYS_BEFORE:
            if self.days not in DAYS_BEFORE_CHOICES:
                raise ValueError(f"days must be one of {DAYS_BEFORE_CHOICES}")
            if self.day is not None:
                raise ValueError("days_before reminders do not take a day of month")
        else:
            if self.day is None:
                raise ValueError("day_of_month reminders need a day")
            if self.days is not None:
                raise ValueError("day_of_month reminders do not take a days offset")
        return self

    @classmethod
    def days_before(cls, days: int) -> ReminderOption:
        return cls(kind=ReminderKind.DAYS_BEFORE, days=days)

    @classmethod
    def on_day(cls, day: int, hour: int = 9, minute: int = 0) -> ReminderOption:
        return cls(kind=ReminderKind.DAY_OF_MONTH, day=day, hour=hour, minute=minute)

    @classmethod
    def from_key(cls, key: str) -> ReminderOption:
        kind, _, value = key.partition(":")
        if kind == ReminderKind.DAYS_BEFORE:
            return cls.days_before(int(value))
        if kind == ReminderKind.DAY_OF_MONTH:
            day, _, clock = value.partition("@")
            hour, _, minute = clock.partition(":")
            return cls.on_day(int(day), int(hour), int(minute))
        raise ValueError(f"Unknown reminder key: {key!r}")

    @property
    def offset_key(self) -> str:
        if self.kind == ReminderKind.DAYS_BEFORE:
            return f"{self.kind}:{self.days}"
        return f"{self.kind}:{self.day}@{self.hour:02d}:{self.minute:02d}"


class Countdown(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    target_date: AwareDatetime
    # Unadjusted date the recurrence steps from; target_date is its observed form.
    anchor_date: AwareDatetime | None = None
    icon: str | None = None
    calendar_type: CalendarType = CalendarType.GREGORIAN
    adjustment_rule: AdjustmentRule = AdjustmentRule.NONE
    recurrence_type: RecurrenceType = RecurrenceType.ONE_TIME
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    reminders: list[ReminderOption] = Field(default_factory=list)
    is_starred: bool = False
    holiday_event_id: str | None = None
    created_at: AwareDatetime = Field(default_factory=_utcnow)
    last_auto_advanced: AwareDatetime | None = None

    @field_validator("reminders")
    @classmethod
    def _dedupe_reminders(cls, value: list[ReminderOption]) -> list[ReminderOption]:
        seen: set[str] = set()
        unique = []
        for option in value:
            if option.offset_key not in seen:
                seen.add(option.offset_key)
                unique.append(option)
        return unique

    @model_validator(mode="after")
    def _check_monthly_reminders(self) -> Countdown:
        if self.recurrence_type != RecurrenceType.MONTHLY and any(
            r.kind == ReminderKind.DAY_OF_MONTH for r in self.reminders
        ):
            raise ValueError("day_of_month reminders require a monthly countdown")
        return self


class PlanEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    offset_key: str
    fire_at: AwareDatetime
    option: ReminderOption


class ScheduledNotificationHandle(BaseModel):
    countdown_id: str
    offset_key: str
    external_handle: str
    fire_at: AwareDatetime


class NotificationPayload(BaseModel):
    countdown_id: str
    offset_key: str
    title: str
    body: str
    fire_at: AwareDatetime


class ScheduleResult(BaseModel):
    """Per-offset outcome of a schedule/reschedule call."""

    countdown_id: str
    handle_ids: list[str] = Field(default_factory=list)
    scheduled: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    cancelled: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    permission_denied: bool = False

    def raise_for_failures(self) -> None:
        if self.permission_denied:
            raise SchedulingPermissionError(
                f"Notification permission denied for countdown {self.countdown_id}"
            )
        if self.failed:
            raise SchedulingPartialFailure(list(self.handle_ids), dict(self.failed))


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class CountdownCreateRequest(BaseModel):
    """Exactly one of ``target_date``, ``hijri_date`` or ``holiday_event_id``."""

    title: str
    target_date: AwareDatetime | None = None
    hijri_date: HijriDate | None = None
    holiday_event_id: str | None = None
    icon: str | None = None
    calendar_type: CalendarType = CalendarType.GREGORIAN
    adjustment_rule: AdjustmentRule = AdjustmentRule.NONE
    recurrence_type: RecurrenceType = RecurrenceType.ONE_TIME
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    reminders: list[ReminderOption] | None = None
    is_starred: bool = False

    @model_validator(mode="after")
    def _one_target(self) -> CountdownCreateRequest:
        given = [
            v
            for v in (self.target_date, self.hijri_date, self.holiday_event_id)
            if v is not None
        ]
        if len(given) != 1:
            raise ValueError(
                "Provide exactly one of target_date, hijri_date or holiday_event_id"
            )
        if self.hijri_date is not None and self.calendar_type != CalendarType.HIJRI:
            raise ValueError("hijri_date requires calendar_type 'hijri'")
        return self


class CountdownUpdateRequest(BaseModel):
    title: str | None = None
    target_date: AwareDatetime | None = None
    hijri_date: HijriDate | None = None
    icon: str | None = None
    calendar_type: CalendarType | None = None
    adjustment_rule: AdjustmentRule | None = None
    recurrence_type: RecurrenceType | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    reminders: list[ReminderOption] | None = None
    is_starred: bool | None = None

    @model_validator(mode="after")
    def _one_target(self) -> CountdownUpdateRequest:
        if self.target_date is not None and self.hijri_date is not None:
            raise ValueError("Provide target_date or hijri_date, not both")
        return self


class HolidayOverrideRequest(BaseModel):
    date: AwareDatetime
    reason: str | None = None


class CountdownEnvelope(BaseModel):
    """A countdown together with the outcome of the scheduling it triggered."""

    countdown: Countdown
    schedule: ScheduleResult | None = None


class CountdownNotifications(BaseModel):
    countdown_id: str
    state: ScheduleState
    handles: list[ScheduledNotificationHandle]
