"""Notification delivery contract and an in-process implementation."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Protocol

from hilal.domain.errors import SchedulingPermissionError
from hilal.domain.models import NotificationPayload

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """What the core needs from the platform scheduler.

    ``schedule`` raises ``SchedulingPermissionError`` when access is denied and
    ``NotificationError`` when a single call fails.
    """

    async def schedule(self, payload: NotificationPayload, fire_at: datetime) -> str: ...

    async def cancel(self, handle: str) -> None: ...

    async def list(self) -> list[str]: ...

    async def has_permission(self) -> bool: ...


class InMemoryNotifier:
    """Holds pending notifications in memory and "delivers" them to the log."""

    def __init__(self, permission_granted: bool = True) -> None:
        self.permission_granted = permission_granted
        self._pending: dict[str, NotificationPayload] = {}
        self.delivered: list[NotificationPayload] = []
        self.calls: list[tuple[str, str]] = []

    async def schedule(self, payload: NotificationPayload, fire_at: datetime) -> str:
        if not self.permission_granted:
            raise SchedulingPermissionError("Notification permission not granted")
        handle = str(uuid.uuid4())
        self._pending[handle] = payload.model_copy(update={"fire_at": fire_at})
        self.calls.append(("schedule", handle))
        logger.debug(
            "Scheduled %s for countdown %s at %s",
            payload.offset_key,
            payload.countdown_id,
            fire_at.isoformat(),
        )
        return handle

    async def cancel(self, handle: str) -> None:
        # Unknown or already-delivered handles are ignored.
        self._pending.pop(handle, None)
        self.calls.append(("cancel", handle))

    async def list(self) -> list[str]:
        return sorted(self._pending)

    async def has_permission(self) -> bool:
        return self.permission_granted

    async def deliver_due(self, now: datetime) -> list[tuple[str, NotificationPayload]]:
        """Pop and return every pending notification whose fire time has come."""
        due = sorted(
            ((h, p) for h, p in self._pending.items() if p.fire_at <= now),
            key=lambda item: item[1].fire_at,
        )
        for handle, payload in due:
            del self._pending[handle]
            self.delivered.append(payload)
            logger.info("Delivered %r: %s", payload.title, payload.body)
        return due
