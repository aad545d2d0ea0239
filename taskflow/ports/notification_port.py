"""Notification port — abstract interface for external delivery channels.

Core jobs depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass
class NotificationPayload:
    """The logical content of a notification, before channel formatting."""

    title: str
    message: str
    task_id: int | None = None
    task_title: str | None = None
    due_date: datetime | None = None
    link: str | None = None


class ChannelSender(Protocol):
    """Abstract channel interface used by the reminder and digest jobs.

    send_message never raises: False means "not delivered, do not retry
    within this tick".
    """

    def is_configured(self) -> bool: ...

    async def send_message(self, to: str, text: str) -> bool: ...

    def format_reminder_message(self, payload: NotificationPayload) -> str: ...
