"""Shared test fixtures and configuration.

Sets up fake environment variables before any taskflow imports and provides
SQLite stores backed by a temp file.
"""

import os

# Patch env vars BEFORE any taskflow imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:fake-token-for-tests")
os.environ.setdefault("ADMIN_USER_IDS", "12345")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("DATABASE_PATH", "data/test_taskflow.db")
os.environ.setdefault("WHATSAPP_API_KEY", "")
os.environ.setdefault("WHATSAPP_FROM_NUMBER", "")
os.environ.setdefault("APP_URL", "https://taskflow.test")

from datetime import datetime, timezone

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all stores in a test."""
    return str(tmp_path / "test_taskflow.db")


@pytest.fixture
def user_db(tmp_db_path):
    from taskflow.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    from taskflow.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def reminder_db(tmp_db_path):
    from taskflow.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path)


@pytest.fixture
def notification_db(tmp_db_path):
    from taskflow.data.db import NotificationDB
    return NotificationDB(db_path=tmp_db_path)


@pytest.fixture
def integration_db(tmp_db_path):
    from taskflow.data.db import IntegrationDB
    return IntegrationDB(db_path=tmp_db_path)


@pytest.fixture
def now():
    """A fixed 'current time': 2026-03-10 09:30:00 UTC."""
    return datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
