"""
TaskFlow Notifier — Data Models.

Plain records for the rows the notification engine reads and writes.
Timestamps are timezone-aware datetimes; the DB layer stores them as UTC
ISO strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NONE = "NONE"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Tasks in these states never produce reminders or digests.
CLOSED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class ReminderKind(str, Enum):
    TIME = "TIME"
    LOCATION = "LOCATION"


class Provider(str, Enum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    GOOGLE_CALENDAR = "google_calendar"


@dataclass
class User:
    """A dashboard user who can own tasks and channel integrations."""

    id: int
    full_name: str | None = None
    email: str | None = None
    created_at: str = ""

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "there"


@dataclass
class Task:
    """A task row.

    A template has is_recurring=True and a recurrence_rule; it is only ever
    copied. A generated occurrence has parent_task_id set and is never
    recurring itself.
    """

    id: int
    created_by: int
    title: str
    description: str | None = None
    notes: str | None = None
    priority: Priority = Priority.NONE
    status: TaskStatus = TaskStatus.TODO
    due_date: datetime | None = None
    is_recurring: bool = False
    recurrence_rule: str | None = None
    parent_task_id: int | None = None
    list_id: int | None = None
    board_id: int | None = None
    board_column_id: int | None = None
    estimated_minutes: int | None = None
    tag_ids: list[int] = field(default_factory=list)
    deleted_at: datetime | None = None
    created_at: str = ""


@dataclass
class Reminder:
    """A point-in-time (TIME) or place (LOCATION) trigger on a task."""

    id: int
    task_id: int
    user_id: int
    kind: ReminderKind
    remind_at: datetime | None = None
    location: str | None = None
    is_triggered: bool = False
    triggered_at: datetime | None = None


@dataclass
class Notification:
    """An in-app notification record (the durable fallback channel)."""

    id: int
    user_id: int
    type: str
    title: str
    message: str
    link: str | None = None
    is_read: bool = False
    created_at: str = ""


@dataclass
class Integration:
    """A user's connection to an external channel.

    external_id is a phone number (whatsapp) or chat id (telegram).
    Deactivated rather than deleted on disconnect.
    """

    id: int
    user_id: int
    provider: Provider
    external_id: str | None = None
    is_active: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    connected_at: datetime | None = None


@dataclass
class DigestTask:
    """A task as it appears in the daily digest."""

    title: str
    priority: Priority
    due_date: datetime | None = None
    location: str | None = None
