"""Telegram channel — implements ChannelSender.

Wraps a telegram.Bot instance; every message goes through the hosted Bot
API as {chat_id, text, parse_mode}.
"""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING

from telegram.constants import ParseMode

from taskflow.core.clock import local_tz

if TYPE_CHECKING:
    from telegram import Bot

    from taskflow.ports.notification_port import NotificationPayload

logger = logging.getLogger(__name__)


def escape_html(text: str) -> str:
    """Escape &, < and > for Telegram's HTML parse mode."""
    return html.escape(text, quote=False)


class TelegramSender:
    """Telegram implementation of ChannelSender."""

    def __init__(self, bot: Bot | None, bot_username: str = "TaskFlowBot") -> None:
        self._bot = bot
        self._bot_username = bot_username

    def is_configured(self) -> bool:
        return self._bot is not None and bool(self._bot.token)

    async def send_message(
        self, to: str, text: str, parse_mode: str = ParseMode.HTML,
    ) -> bool:
        if not self.is_configured():
            logger.warning("Telegram not configured")
            return False

        try:
            await self._bot.send_message(chat_id=to, text=text, parse_mode=parse_mode)
            return True
        except Exception as exc:
            logger.error("Telegram send to %s failed: %s", to, exc)
            return False

    def format_reminder_message(self, payload: NotificationPayload) -> str:
        message = f"🔔 <b>{escape_html(payload.title)}</b>\n\n"
        message += escape_html(payload.message)

        if payload.task_title:
            message += f"\n\n📋 <b>Task:</b> {escape_html(payload.task_title)}"

        if payload.due_date:
            due = payload.due_date.astimezone(local_tz())
            message += f"\n⏰ <b>Due:</b> {due:%Y-%m-%d} at {due:%H:%M}"

        if payload.link:
            message += f'\n\n<a href="{html.escape(payload.link)}">View Task</a>'

        return message

    async def get_bot_info(self) -> dict:
        """Verify the token with getMe. Returns {"ok": bool, "username"?: str}."""
        if not self.is_configured():
            return {"ok": False}
        try:
            me = await self._bot.get_me()
            return {"ok": True, "username": me.username}
        except Exception as exc:
            logger.warning("Telegram getMe failed: %s", exc)
            return {"ok": False}

    def start_link(self, user_id: int | str) -> str:
        """Deep link that opens the bot with /start <user_id>."""
        return f"https://t.me/{self._bot_username}?start={user_id}"
