"""
TaskFlow Notifier — SQLite stores.

Query-by-filter plus single-row create/update, one class per table family.
No multi-row transactional guarantee is assumed by the callers: every job
treats each row write as an independent step.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from taskflow.core.clock import from_iso, to_iso, utcnow
from taskflow.data.models import (
    DigestTask,
    Integration,
    Notification,
    Priority,
    Provider,
    Reminder,
    ReminderKind,
    Task,
    TaskStatus,
    User,
)

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = (
    "CASE t.priority WHEN 'HIGH' THEN 0 WHEN 'MEDIUM' THEN 1 "
    "WHEN 'LOW' THEN 2 ELSE 3 END"
)


class _SQLiteDB:
    """Connection handling shared by every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from taskflow.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class UserDB(_SQLiteDB):
    """Dashboard users (read-mostly; owned by the auth layer)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name   TEXT,
                    email       TEXT,
                    created_at  TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            full_name=row["full_name"],
            email=row["email"],
            created_at=row["created_at"],
        )

    def add_user(self, full_name: str | None = None, email: str | None = None) -> User:
        now = to_iso(utcnow())
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO users (full_name, email, created_at) VALUES (?, ?, ?)",
                (full_name, email, now),
            )
            user_id = cursor.lastrowid
        logger.info("User registered: #%d", user_id)
        return User(id=user_id, full_name=full_name, email=email, created_at=now)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)


class TaskDB(_SQLiteDB):
    """Tasks, recurring templates and their generated occurrences."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_by        INTEGER NOT NULL,
                    title             TEXT    NOT NULL,
                    description       TEXT,
                    notes             TEXT,
                    priority          TEXT    NOT NULL DEFAULT 'NONE',
                    status            TEXT    NOT NULL DEFAULT 'TODO',
                    due_date          TEXT,
                    is_recurring      INTEGER NOT NULL DEFAULT 0,
                    recurrence_rule   TEXT,
                    parent_task_id    INTEGER,
                    list_id           INTEGER,
                    board_id          INTEGER,
                    board_column_id   INTEGER,
                    estimated_minutes INTEGER,
                    deleted_at        TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_tags (
                    task_id INTEGER NOT NULL,
                    tag_id  INTEGER NOT NULL,
                    PRIMARY KEY (task_id, tag_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_parent_due "
                "ON tasks (parent_task_id, due_date)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row, tag_ids: list[int] | None = None) -> Task:
        return Task(
            id=row["id"],
            created_by=row["created_by"],
            title=row["title"],
            description=row["description"],
            notes=row["notes"],
            priority=Priority(row["priority"]),
            status=TaskStatus(row["status"]),
            due_date=from_iso(row["due_date"]),
            is_recurring=bool(row["is_recurring"]),
            recurrence_rule=row["recurrence_rule"],
            parent_task_id=row["parent_task_id"],
            list_id=row["list_id"],
            board_id=row["board_id"],
            board_column_id=row["board_column_id"],
            estimated_minutes=row["estimated_minutes"],
            tag_ids=tag_ids or [],
            deleted_at=from_iso(row["deleted_at"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _tags_for(conn: sqlite3.Connection, task_id: int) -> list[int]:
        rows = conn.execute(
            "SELECT tag_id FROM task_tags WHERE task_id = ? ORDER BY tag_id",
            (task_id,),
        ).fetchall()
        return [r["tag_id"] for r in rows]

    def add_task(
        self,
        created_by: int,
        title: str,
        description: str | None = None,
        notes: str | None = None,
        priority: Priority = Priority.NONE,
        status: TaskStatus = TaskStatus.TODO,
        due_date: datetime | None = None,
        is_recurring: bool = False,
        recurrence_rule: str | None = None,
        parent_task_id: int | None = None,
        list_id: int | None = None,
        board_id: int | None = None,
        board_column_id: int | None = None,
        estimated_minutes: int | None = None,
        tag_ids: list[int] | None = None,
    ) -> Task:
        """Insert a task and its tag links."""
        now = to_iso(utcnow())
        tag_ids = list(tag_ids or [])
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (created_by, title, description, notes, priority, status,
                     due_date, is_recurring, recurrence_rule, parent_task_id,
                     list_id, board_id, board_column_id, estimated_minutes,
                     created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    created_by, title, description, notes,
                    Priority(priority).value, TaskStatus(status).value,
                    to_iso(due_date), int(is_recurring), recurrence_rule,
                    parent_task_id, list_id, board_id, board_column_id,
                    estimated_minutes, now,
                ),
            )
            task_id = cursor.lastrowid
            conn.executemany(
                "INSERT INTO task_tags (task_id, tag_id) VALUES (?, ?)",
                [(task_id, tag_id) for tag_id in tag_ids],
            )
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()

        logger.debug("Task added: #%d '%s'", task_id, title)
        return self._row_to_task(row, tag_ids)

    def get_task(self, task_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_task(row, self._tags_for(conn, task_id))

    def set_status(self, task_id: int, status: TaskStatus) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET status = ? WHERE id = ?",
                (TaskStatus(status).value, task_id),
            )

    def list_recurring_templates(self) -> list[Task]:
        """Templates eligible for expansion: live, not cancelled, with a rule."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE is_recurring = 1
                  AND recurrence_rule IS NOT NULL
                  AND deleted_at IS NULL
                  AND status != 'CANCELLED'
                ORDER BY id
                """
            ).fetchall()
            return [self._row_to_task(r, self._tags_for(conn, r["id"])) for r in rows]

    def list_children(self, parent_task_id: int) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE parent_task_id = ? ORDER BY due_date",
                (parent_task_id,),
            ).fetchall()
            return [self._row_to_task(r, self._tags_for(conn, r["id"])) for r in rows]

    def find_occurrence(
        self, parent_task_id: int, day_start: datetime, day_end: datetime,
    ) -> Task | None:
        """Return a child of the template due within [day_start, day_end)."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM tasks
                WHERE parent_task_id = ? AND due_date >= ? AND due_date < ?
                LIMIT 1
                """,
                (parent_task_id, to_iso(day_start), to_iso(day_end)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def create_occurrence(self, template: Task, due_date: datetime) -> Task:
        """Copy a template into a concrete, non-recurring TODO task."""
        return self.add_task(
            created_by=template.created_by,
            title=template.title,
            description=template.description,
            notes=template.notes,
            priority=template.priority,
            status=TaskStatus.TODO,
            due_date=due_date,
            is_recurring=False,
            parent_task_id=template.id,
            list_id=template.list_id,
            board_id=template.board_id,
            board_column_id=template.board_column_id,
            estimated_minutes=template.estimated_minutes,
            tag_ids=template.tag_ids,
        )

    def list_digest_tasks(
        self, user_id: int, day_start: datetime, day_end: datetime,
    ) -> list[DigestTask]:
        """Tasks for a user's daily summary.

        Due today, OR with an untriggered time reminder today, OR any
        recurring template (no check that today is an actual occurrence).
        """
        start, end = to_iso(day_start), to_iso(day_end)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT t.title, t.priority, t.due_date,
                       (SELECT r.location FROM reminders r
                         WHERE r.task_id = t.id AND r.kind = 'LOCATION'
                         ORDER BY r.id LIMIT 1) AS location
                FROM tasks t
                WHERE t.created_by = ?
                  AND t.deleted_at IS NULL
                  AND t.status != 'COMPLETED'
                  AND (
                        (t.due_date >= ? AND t.due_date < ?)
                     OR EXISTS (
                            SELECT 1 FROM reminders r
                            WHERE r.task_id = t.id
                              AND r.kind = 'TIME'
                              AND r.is_triggered = 0
                              AND r.remind_at >= ? AND r.remind_at < ?
                        )
                     OR (t.is_recurring = 1 AND t.recurrence_rule IS NOT NULL)
                  )
                ORDER BY {_PRIORITY_ORDER}, t.due_date IS NULL, t.due_date
                """,
                (user_id, start, end, start, end),
            ).fetchall()

        return [
            DigestTask(
                title=r["title"],
                priority=Priority(r["priority"]),
                due_date=from_iso(r["due_date"]),
                location=r["location"],
            )
            for r in rows
        ]

    def list_open_tasks_due(
        self, user_id: int, day_start: datetime, day_end: datetime, limit: int = 10,
    ) -> list[Task]:
        """Open tasks due in [day_start, day_end), for the /tasks command."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT t.* FROM tasks t
                WHERE t.created_by = ?
                  AND t.deleted_at IS NULL
                  AND t.status != 'COMPLETED'
                  AND t.due_date >= ? AND t.due_date < ?
                ORDER BY {_PRIORITY_ORDER}, t.due_date
                LIMIT ?
                """,
                (user_id, to_iso(day_start), to_iso(day_end), limit),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]


class ReminderDB(_SQLiteDB):
    """Task reminders. is_triggered only ever moves from 0 to 1."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id       INTEGER NOT NULL,
                    user_id       INTEGER NOT NULL,
                    kind          TEXT    NOT NULL,
                    remind_at     TEXT,
                    location      TEXT,
                    is_triggered  INTEGER NOT NULL DEFAULT 0,
                    triggered_at  TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reminders_due "
                "ON reminders (is_triggered, kind, remind_at)"
            )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            kind=ReminderKind(row["kind"]),
            remind_at=from_iso(row["remind_at"]),
            location=row["location"],
            is_triggered=bool(row["is_triggered"]),
            triggered_at=from_iso(row["triggered_at"]),
        )

    def add_reminder(
        self,
        task_id: int,
        user_id: int,
        kind: ReminderKind = ReminderKind.TIME,
        remind_at: datetime | None = None,
        location: str | None = None,
    ) -> Reminder:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminders (task_id, user_id, kind, remind_at, location)
                VALUES (?, ?, ?, ?, ?)
                """,
                (task_id, user_id, ReminderKind(kind).value, to_iso(remind_at), location),
            )
            reminder_id = cursor.lastrowid
        return Reminder(
            id=reminder_id,
            task_id=task_id,
            user_id=user_id,
            kind=ReminderKind(kind),
            remind_at=remind_at,
            location=location,
        )

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_due(self, now: datetime) -> list[Reminder]:
        """Untriggered TIME reminders with remind_at <= now."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE kind = 'TIME' AND remind_at <= ? AND is_triggered = 0
                ORDER BY remind_at, id
                """,
                (to_iso(now),),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def mark_triggered(self, reminder_id: int, triggered_at: datetime) -> bool:
        """Flip is_triggered. Returns False if it was already set."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders SET is_triggered = 1, triggered_at = ?
                WHERE id = ? AND is_triggered = 0
                """,
                (to_iso(triggered_at), reminder_id),
            )
        return cursor.rowcount > 0


class NotificationDB(_SQLiteDB):
    """In-app notifications shown in the dashboard bell."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    type        TEXT    NOT NULL,
                    title       TEXT    NOT NULL,
                    message     TEXT    NOT NULL,
                    link        TEXT,
                    is_read     INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL
                )
            """)
        logger.debug("Notifications table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"],
            message=row["message"],
            link=row["link"],
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
        )

    def create(
        self,
        user_id: int,
        title: str,
        message: str,
        link: str | None = None,
        type: str = "INFO",
    ) -> Notification:
        now = to_iso(utcnow())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications (user_id, type, title, message, link, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, type, title, message, link, now),
            )
            notification_id = cursor.lastrowid
        return Notification(
            id=notification_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            created_at=now,
        )

    def list_for_user(self, user_id: int) -> list[Notification]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]


class IntegrationDB(_SQLiteDB):
    """Per-user channel connections, one row per (user, provider)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS integrations (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id        INTEGER NOT NULL,
                    provider       TEXT    NOT NULL,
                    external_id    TEXT,
                    is_active      INTEGER NOT NULL DEFAULT 0,
                    access_token   TEXT,
                    refresh_token  TEXT,
                    expires_at     TEXT,
                    connected_at   TEXT,
                    UNIQUE (user_id, provider)
                )
            """)
        logger.debug("Integrations table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_integration(row: sqlite3.Row) -> Integration:
        return Integration(
            id=row["id"],
            user_id=row["user_id"],
            provider=Provider(row["provider"]),
            external_id=row["external_id"],
            is_active=bool(row["is_active"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=from_iso(row["expires_at"]),
            connected_at=from_iso(row["connected_at"]),
        )

    def connect(
        self,
        user_id: int,
        provider: Provider,
        external_id: str | None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        active: bool = True,
    ) -> Integration:
        """Create or re-activate the user's integration for provider.

        active=False records a pending opt-in (e.g. a Telegram link that
        waits for the user to press /start in the bot).
        """
        connected_at = to_iso(utcnow()) if active else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO integrations
                    (user_id, provider, external_id, is_active, access_token,
                     refresh_token, expires_at, connected_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    external_id = excluded.external_id,
                    is_active = excluded.is_active,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    connected_at = excluded.connected_at
                """,
                (
                    user_id, Provider(provider).value, external_id, int(active),
                    access_token, refresh_token, to_iso(expires_at), connected_at,
                ),
            )
            row = conn.execute(
                "SELECT * FROM integrations WHERE user_id = ? AND provider = ?",
                (user_id, Provider(provider).value),
            ).fetchone()
        logger.info("Integration %s saved for user %d (active=%s)", provider, user_id, active)
        return self._row_to_integration(row)

    def deactivate(self, user_id: int, provider: Provider) -> bool:
        """Disconnect: keep the row, drop the tokens."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE integrations
                SET is_active = 0, access_token = NULL, refresh_token = NULL,
                    expires_at = NULL
                WHERE user_id = ? AND provider = ?
                """,
                (user_id, Provider(provider).value),
            )
        deactivated = cursor.rowcount > 0
        if deactivated:
            logger.info("Integration %s deactivated for user %d", provider, user_id)
        return deactivated

    def get(self, user_id: int, provider: Provider) -> Integration | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM integrations WHERE user_id = ? AND provider = ?",
                (user_id, Provider(provider).value),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_integration(row)

    def get_active(self, user_id: int, provider: Provider) -> Integration | None:
        integration = self.get(user_id, provider)
        if integration is None or not integration.is_active or not integration.external_id:
            return None
        return integration

    def list_active(self, provider: Provider) -> list[Integration]:
        """Active integrations for provider that have somewhere to deliver to."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM integrations
                WHERE provider = ? AND is_active = 1 AND external_id IS NOT NULL
                ORDER BY id
                """,
                (Provider(provider).value,),
            ).fetchall()
        return [self._row_to_integration(r) for r in rows]

    def find_active_by_external_id(
        self, provider: Provider, external_id: str,
    ) -> Integration | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM integrations
                WHERE provider = ? AND external_id = ? AND is_active = 1
                """,
                (Provider(provider).value, external_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_integration(row)

    def activate_pending(
        self, provider: Provider, reference: str, external_id: str,
    ) -> Integration | None:
        """Complete a pending opt-in whose external_id holds a link reference."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM integrations
                WHERE provider = ? AND external_id = ? AND is_active = 0
                """,
                (Provider(provider).value, reference),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                """
                UPDATE integrations
                SET external_id = ?, is_active = 1, connected_at = ?
                WHERE id = ?
                """,
                (external_id, to_iso(utcnow()), row["id"]),
            )
            row = conn.execute(
                "SELECT * FROM integrations WHERE id = ?", (row["id"],)
            ).fetchone()
        integration = self._row_to_integration(row)
        logger.info(
            "Pending %s integration #%d activated for user %d",
            provider, integration.id, integration.user_id,
        )
        return integration
