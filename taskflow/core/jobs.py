"""
TaskFlow Notifier — Job entry points.

Each scheduled job is triggered from outside (the bot's job queue or
`python main.py <job>`) and reports {"success": bool, **counts}. Two runs of
the same job never overlap inside one process: a run that finds its job
already in progress returns {"success": True, "skipped": True}.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from taskflow.core.daily_digest import send_daily_notifications
from taskflow.core.recurrence import generate_recurring_tasks
from taskflow.core.reminder_dispatch import process_reminders
from taskflow.data.models import Provider

if TYPE_CHECKING:
    from taskflow.data.db import IntegrationDB, NotificationDB, ReminderDB, TaskDB, UserDB
    from taskflow.ports.notification_port import ChannelSender

logger = logging.getLogger(__name__)

REMINDERS = "reminders"
RECURRING = "recurring"
DAILY_DIGEST = "daily_digest"
JOB_NAMES = (REMINDERS, RECURRING, DAILY_DIGEST)


@dataclass
class JobRunner:
    """Holds the stores and senders the jobs need."""

    task_db: TaskDB
    reminder_db: ReminderDB
    notification_db: NotificationDB
    integration_db: IntegrationDB
    user_db: UserDB
    senders: dict[Provider, ChannelSender]
    app_url: str = ""
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)

    async def run(self, name: str) -> dict[str, Any]:
        """Run one job now and report the outcome instead of raising."""
        if name not in JOB_NAMES:
            raise ValueError(f"Unknown job '{name}' (expected one of {', '.join(JOB_NAMES)})")

        lock = self._locks.setdefault(name, asyncio.Lock())
        if lock.locked():
            logger.warning("Job '%s' is still running, skipping this invocation", name)
            return {"success": True, "skipped": True}

        async with lock:
            try:
                counts = await self._dispatch(name)
            except Exception as exc:
                logger.exception("Job '%s' failed", name)
                return {"success": False, "error": str(exc)}

        return {"success": True, **counts}

    async def _dispatch(self, name: str) -> dict[str, int]:
        if name == REMINDERS:
            return await process_reminders(
                self.reminder_db,
                self.task_db,
                self.notification_db,
                self.integration_db,
                self.senders,
                app_url=self.app_url,
            )
        if name == RECURRING:
            return generate_recurring_tasks(self.task_db)

        whatsapp = self.senders.get(Provider.WHATSAPP)
        if whatsapp is None:
            raise RuntimeError("Daily digest needs a WhatsApp sender")
        return await send_daily_notifications(
            self.integration_db, self.task_db, self.user_db, whatsapp,
        )
