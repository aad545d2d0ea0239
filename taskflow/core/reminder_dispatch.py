"""
TaskFlow Notifier — Reminder Dispatch Loop.

Runs every minute. Each due, untriggered TIME reminder fires at most once:
an in-app notification is always written, one external send is attempted
on the user's active channel, and the reminder is marked triggered whether
or not that send got through. A failed external send is not retried.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from taskflow.core.clock import utcnow
from taskflow.data.models import CLOSED_STATUSES, Provider
from taskflow.ports.notification_port import NotificationPayload

if TYPE_CHECKING:
    from taskflow.data.db import IntegrationDB, NotificationDB, ReminderDB, TaskDB
    from taskflow.data.models import Reminder, Task
    from taskflow.ports.notification_port import ChannelSender

logger = logging.getLogger(__name__)

# Order in which a user's integrations are tried for the external send.
CHANNEL_PREFERENCE = (Provider.WHATSAPP, Provider.TELEGRAM)

REMINDER_TITLE = "Task Reminder"


async def process_reminders(
    reminder_db: ReminderDB,
    task_db: TaskDB,
    notification_db: NotificationDB,
    integration_db: IntegrationDB,
    senders: Mapping[Provider, ChannelSender],
    now: datetime | None = None,
    app_url: str = "",
) -> dict[str, int]:
    """Fire every due reminder once.

    Returns counts: processed (reminders selected), notified (in-app
    records written), delivered (external sends that succeeded), closed
    (reminders of finished tasks closed silently), failed.

    A failure of the initial query propagates; a failure while handling one
    reminder is logged and the rest of the batch still runs.
    """
    if now is None:
        now = utcnow()

    due = reminder_db.list_due(now)
    logger.info("Reminder dispatch: %d due reminder(s)", len(due))

    counts = {"processed": len(due), "notified": 0, "delivered": 0, "closed": 0, "failed": 0}

    for reminder in due:
        try:
            outcome = await _dispatch_one(
                reminder, task_db, notification_db, integration_db,
                reminder_db, senders, now, app_url,
            )
        except Exception as exc:
            counts["failed"] += 1
            logger.error("Failed to process reminder #%d: %s", reminder.id, exc)
            continue

        if outcome == "closed":
            counts["closed"] += 1
        else:
            counts["notified"] += 1
            if outcome == "delivered":
                counts["delivered"] += 1

    logger.info(
        "Reminder dispatch done: %d notified, %d delivered, %d closed, %d failed",
        counts["notified"], counts["delivered"], counts["closed"], counts["failed"],
    )
    return counts


async def _dispatch_one(
    reminder: Reminder,
    task_db: TaskDB,
    notification_db: NotificationDB,
    integration_db: IntegrationDB,
    reminder_db: ReminderDB,
    senders: Mapping[Provider, ChannelSender],
    now: datetime,
    app_url: str,
) -> str:
    """Handle one reminder. Returns 'closed', 'notified' or 'delivered'."""
    task = task_db.get_task(reminder.task_id)

    if task is None or task.status in CLOSED_STATUSES:
        reminder_db.mark_triggered(reminder.id, now)
        logger.info("Reminder #%d closed without notification (task finished)", reminder.id)
        return "closed"

    notification_db.create(
        user_id=reminder.user_id,
        title=REMINDER_TITLE,
        message=f"Reminder: {task.title}",
        link=f"/dashboard/tasks/{task.id}",
    )

    delivered = await _send_external(reminder, task, integration_db, senders, app_url)

    if not reminder_db.mark_triggered(reminder.id, now):
        logger.warning("Reminder #%d was already triggered by another run", reminder.id)

    logger.info("Triggered reminder #%d for task '%s'", reminder.id, task.title)
    return "delivered" if delivered else "notified"


async def _send_external(
    reminder: Reminder,
    task: Task,
    integration_db: IntegrationDB,
    senders: Mapping[Provider, ChannelSender],
    app_url: str,
) -> bool:
    """Attempt exactly one external send on the first usable channel."""
    for provider in CHANNEL_PREFERENCE:
        sender = senders.get(provider)
        if sender is None or not sender.is_configured():
            continue
        integration = integration_db.get_active(reminder.user_id, provider)
        if integration is None:
            continue

        payload = NotificationPayload(
            title=REMINDER_TITLE,
            message=f"Reminder: {task.title}",
            task_id=task.id,
            task_title=task.title,
            due_date=task.due_date,
            link=f"{app_url.rstrip('/')}/dashboard/tasks?taskId={task.id}" if app_url else None,
        )
        text = sender.format_reminder_message(payload)
        sent = await sender.send_message(integration.external_id, text)
        if not sent:
            logger.warning(
                "Reminder #%d: %s delivery failed, in-app notification only",
                reminder.id, provider.value,
            )
        return sent

    return False
