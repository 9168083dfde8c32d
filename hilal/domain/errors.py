"""Error taxonomy for calendar resolution, storage and notification scheduling."""

from __future__ import annotations


class HilalError(Exception):
    """Base class for every error raised by the countdown core."""


class CalendarRangeError(HilalError, ValueError):
    """A date conversion input falls outside the supported calendar range."""


class StorageError(HilalError):
    """Override or handle persistence failed; nothing was half-written."""


class SchedulingError(HilalError):
    """Base class for failures reported by the external notification scheduler."""


class SchedulingPermissionError(SchedulingError):
    """The external scheduler refused access (notification permission denied)."""


class NotificationError(SchedulingError):
    """A single schedule or cancel call against the external scheduler failed."""


class SchedulingPartialFailure(SchedulingError):
    """Some offsets were scheduled and others failed.

    ``succeeded`` holds the live handle ids, ``failed`` maps each failed
    offset key to the reason it failed.  Successes are never rolled back.
    """

    def __init__(self, succeeded: list[str], failed: dict[str, str]) -> None:
        self.succeeded = succeeded
        self.failed = failed
        super().__init__(
            f"{len(failed)} reminder(s) failed to schedule: {', '.join(sorted(failed))}"
        )
