"""Tests for taskflow.adapters.channel_factory — wiring from settings."""

from unittest.mock import MagicMock

from taskflow.adapters.channel_factory import (
    create_job_runner,
    create_senders,
    create_whatsapp_session,
)
from taskflow.adapters.telegram_sender import TelegramSender
from taskflow.adapters.whatsapp_bridge import WhatsAppBridgeDriver
from taskflow.adapters.whatsapp_sender import WhatsAppSender
from taskflow.data.models import Provider
from taskflow.integrations.whatsapp_session import SessionState, WhatsAppSession


def test_session_starts_disconnected():
    session = create_whatsapp_session()
    assert isinstance(session, WhatsAppSession)
    assert session.status() is SessionState.DISCONNECTED


def test_session_builds_bridge_drivers():
    session = create_whatsapp_session()
    assert isinstance(session._driver_factory(), WhatsAppBridgeDriver)


def test_senders_for_both_channels():
    bot = MagicMock()
    senders = create_senders(session=None, bot=bot)
    assert isinstance(senders[Provider.WHATSAPP], WhatsAppSender)
    assert isinstance(senders[Provider.TELEGRAM], TelegramSender)


def test_whatsapp_unconfigured_without_session_or_keys():
    senders = create_senders(session=None, bot=None)
    assert senders[Provider.WHATSAPP].is_configured() is False
    assert senders[Provider.TELEGRAM].is_configured() is False


def test_job_runner_uses_given_db(tmp_db_path):
    runner = create_job_runner(session=None, bot=None, db_path=tmp_db_path)
    task = runner.task_db.add_task(created_by=1, title="Wired")
    assert runner.app_url == "https://taskflow.test"
    assert set(runner.senders) == {Provider.WHATSAPP, Provider.TELEGRAM}
    assert runner.task_db.get_task(task.id).title == "Wired"
