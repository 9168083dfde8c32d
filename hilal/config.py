"""Runtime settings loaded from ``HILAL_*`` environment variables."""

from __future__ import annotations

import logging
import os
from datetime import time, tzinfo

from dateutil import tz
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE
from pydantic import BaseModel, Field, field_validator

from hilal.domain.models import AdjustmentRule

_DAY_MAP = {
    "monday": MO,
    "tuesday": TU,
    "wednesday": WE,
    "thursday": TH,
    "friday": FR,
    "saturday": SA,
    "sunday": SU,
}


class Settings(BaseModel):
    timezone: str = "Asia/Riyadh"
    # Python weekday numbers (Monday == 0); default is Friday + Saturday.
    weekend_days: frozenset[int] = frozenset({FR.weekday, SA.weekday})
    horizon_years: int = Field(default=1, ge=1)
    holiday_adjustment_rule: AdjustmentRule = AdjustmentRule.SMART
    monthly_reminder_time: time = time(9, 0)
    default_reminder_days: list[int] = Field(default_factory=lambda: [0, 1])
    log_level: str = "INFO"

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        if tz.gettz(value) is None:
            raise ValueError(f"Unknown time zone: {value}")
        return value

    @field_validator("weekend_days")
    @classmethod
    def _proper_subset(cls, value: frozenset[int]) -> frozenset[int]:
        if not value or not value < frozenset(range(7)):
            raise ValueError("weekend_days must be a non-empty proper subset of the week")
        return value

    @property
    def zone(self) -> tzinfo:
        return tz.gettz(self.timezone)


def parse_weekdays(raw: str) -> frozenset[int]:
    """Turn ``"friday,saturday"`` into ``{4, 5}``."""
    days = set()
    for name in raw.split(","):
        name = name.strip().lower()
        if not name:
            continue
        if name not in _DAY_MAP:
            raise ValueError(f"Unknown weekday: {name}")
        days.add(_DAY_MAP[name].weekday)
    return frozenset(days)


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    values: dict = {}
    if "HILAL_TIMEZONE" in env:
        values["timezone"] = env["HILAL_TIMEZONE"]
    if "HILAL_WEEKEND_DAYS" in env:
        values["weekend_days"] = parse_weekdays(env["HILAL_WEEKEND_DAYS"])
    if "HILAL_HORIZON_YEARS" in env:
        values["horizon_years"] = int(env["HILAL_HORIZON_YEARS"])
    if "HILAL_HOLIDAY_ADJUSTMENT_RULE" in env:
        values["holiday_adjustment_rule"] = AdjustmentRule(
            env["HILAL_HOLIDAY_ADJUSTMENT_RULE"].lower()
        )
    if "HILAL_MONTHLY_REMINDER_TIME" in env:
        values["monthly_reminder_time"] = time.fromisoformat(
            env["HILAL_MONTHLY_REMINDER_TIME"]
        )
    if "HILAL_DEFAULT_REMINDER_DAYS" in env:
        values["default_reminder_days"] = [
            int(d) for d in env["HILAL_DEFAULT_REMINDER_DAYS"].split(",") if d.strip()
        ]
    if "HILAL_LOG_LEVEL" in env:
        values["log_level"] = env["HILAL_LOG_LEVEL"].upper()
    return Settings(**values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )
