"""Channel factory — builds the session, senders and job runner from config."""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskflow.config import settings
from taskflow.data.models import Provider

if TYPE_CHECKING:
    from telegram import Bot

    from taskflow.core.jobs import JobRunner
    from taskflow.integrations.whatsapp_session import WhatsAppSession
    from taskflow.ports.notification_port import ChannelSender


def create_whatsapp_session() -> WhatsAppSession:
    """Return a session whose drivers talk to the configured WhatsApp bridge."""
    from taskflow.adapters.whatsapp_bridge import WhatsAppBridgeDriver
    from taskflow.integrations.whatsapp_session import WhatsAppSession

    def _driver_factory() -> WhatsAppBridgeDriver:
        return WhatsAppBridgeDriver(
            base_url=settings.WHATSAPP_BRIDGE_URL,
            session_name=settings.WHATSAPP_SESSION_NAME,
            api_key=settings.WHATSAPP_BRIDGE_API_KEY,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    return WhatsAppSession(driver_factory=_driver_factory)


def create_senders(
    session: WhatsAppSession | None,
    bot: Bot | None,
) -> dict[Provider, ChannelSender]:
    """Return one sender per external channel."""
    from taskflow.adapters.telegram_sender import TelegramSender
    from taskflow.adapters.whatsapp_sender import WhatsAppSender

    return {
        Provider.WHATSAPP: WhatsAppSender(
            session,
            api_key=settings.WHATSAPP_API_KEY,
            from_number=settings.WHATSAPP_FROM_NUMBER,
            api_url=settings.WHATSAPP_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        ),
        Provider.TELEGRAM: TelegramSender(bot, bot_username=settings.TELEGRAM_BOT_USERNAME),
    }


def create_job_runner(
    session: WhatsAppSession | None,
    bot: Bot | None,
    db_path: str | None = None,
) -> JobRunner:
    """Wire the SQLite stores and channel senders into a JobRunner."""
    from taskflow.core.jobs import JobRunner
    from taskflow.data.db import IntegrationDB, NotificationDB, ReminderDB, TaskDB, UserDB

    return JobRunner(
        task_db=TaskDB(db_path),
        reminder_db=ReminderDB(db_path),
        notification_db=NotificationDB(db_path),
        integration_db=IntegrationDB(db_path),
        user_db=UserDB(db_path),
        senders=create_senders(session, bot),
        app_url=settings.APP_URL,
    )
