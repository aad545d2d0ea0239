"""
TaskFlow Notifier — Daily Digest.

A proactive morning push to every user with an active WhatsApp integration:
one message listing today's tasks with priority, time and location.

Known limitation, kept on purpose until product confirms otherwise: every
recurring template is listed, whether or not its rule actually fires today.
"""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING

from taskflow.core.clock import day_bounds, local_tz, utcnow
from taskflow.data.models import Priority, Provider

if TYPE_CHECKING:
    from taskflow.data.db import IntegrationDB, TaskDB, UserDB
    from taskflow.data.models import DigestTask
    from taskflow.ports.notification_port import ChannelSender

logger = logging.getLogger(__name__)

PRIORITY_GLYPHS = {
    Priority.HIGH: "🔴",
    Priority.MEDIUM: "🟡",
    Priority.LOW: "🟢",
    Priority.NONE: "⚪",
}


def build_daily_summary_message(
    user_name: str,
    tasks: list[DigestTask],
    today: datetime,
    tz: tzinfo,
) -> str:
    """Format the WhatsApp morning summary."""
    local_today = today.astimezone(tz)
    lines = [
        f"🌅 *Good Morning, {user_name}!*",
        "",
        f"📅 *Your tasks for {local_today:%A, %B} {local_today.day}*",
        "",
    ]

    if not tasks:
        lines += ["_No tasks scheduled for today. Enjoy your day!_ ✨", ""]
    else:
        for index, task in enumerate(tasks, start=1):
            glyph = PRIORITY_GLYPHS.get(task.priority, "⚪")
            lines.append(f"{index}. {glyph} *{task.title}*")
            if task.due_date:
                due = task.due_date.astimezone(tz)
                lines.append(f"   ⏰ {due.strftime('%I:%M %p').lstrip('0')}")
            if task.location:
                lines.append(f"   📍 {task.location}")
            lines.append("")

        high = sum(1 for t in tasks if t.priority is Priority.HIGH)
        if high:
            plural = "s" if high > 1 else ""
            lines += [f"⚠️ *{high} high priority task{plural}*", ""]

    lines += ["_Have a productive day! 💪_", "_Powered by TaskFlow_"]
    return "\n".join(lines)


async def send_daily_notifications(
    integration_db: IntegrationDB,
    task_db: TaskDB,
    user_db: UserDB,
    sender: ChannelSender,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> dict[str, int]:
    """Send one summary per active WhatsApp integration.

    Returns {"sent": delivered summaries, "total": integrations considered}.
    Users with nothing on today get no message. A failure for one user is
    logged and the loop moves on.
    """
    if now is None:
        now = utcnow()
    if tz is None:
        tz = local_tz()

    day_start, day_end = day_bounds(now, tz)
    integrations = integration_db.list_active(Provider.WHATSAPP)
    logger.info(
        "Daily digest for %s: %d active WhatsApp integration(s)",
        day_start.date().isoformat(), len(integrations),
    )

    sent = 0
    for integration in integrations:
        try:
            user = user_db.get_user(integration.user_id)
            if user is None:
                logger.warning("Integration #%d has no user, skipping", integration.id)
                continue

            tasks = task_db.list_digest_tasks(user.id, day_start, day_end)
            if not tasks:
                continue

            message = build_daily_summary_message(user.display_name, tasks, now, tz)
            if await sender.send_message(integration.external_id, message):
                sent += 1
                logger.info(
                    "Daily summary sent to user %d (%d tasks)", user.id, len(tasks),
                )
            else:
                logger.warning("Daily summary for user %d not delivered", user.id)
        except Exception as exc:
            logger.error(
                "Failed to send daily summary for integration #%d: %s",
                integration.id, exc,
            )

    logger.info("Daily digest done: %d of %d sent", sent, len(integrations))
    return {"sent": sent, "total": len(integrations)}
