"""WhatsApp channel — implements ChannelSender.

Prefers the self-hosted paired session; when it is not CONNECTED, falls back
to the hosted WhatsApp gateway if an API key and sender number are set.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import httpx

from taskflow.core.clock import local_tz

if TYPE_CHECKING:
    from taskflow.integrations.whatsapp_session import WhatsAppSession
    from taskflow.ports.notification_port import NotificationPayload

logger = logging.getLogger(__name__)


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


class WhatsAppSender:
    """WhatsApp implementation of ChannelSender."""

    def __init__(
        self,
        session: WhatsAppSession | None,
        api_key: str = "",
        from_number: str = "",
        api_url: str = "https://api.sendzen.io/v1/messages",
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._api_key = api_key
        self._from_number = from_number
        self._api_url = api_url
        self._timeout = timeout

    @property
    def has_hosted_api(self) -> bool:
        return bool(self._api_key and self._from_number)

    def _session_connected(self) -> bool:
        return self._session is not None and self._session.is_connected

    def is_configured(self) -> bool:
        return self._session_connected() or self.has_hosted_api

    async def send_message(self, to: str, text: str) -> bool:
        if self._session_connected():
            logger.info("Sending WhatsApp message via paired session")
            return await self._session.send(to, text)

        if not self.has_hosted_api:
            logger.warning("WhatsApp not configured (no paired session, no hosted API)")
            return False

        return await self._send_hosted(to, text)

    async def _send_hosted(self, to: str, text: str) -> bool:
        body = {
            "from": _digits(self._from_number),
            "to": _digits(to),
            "type": "text",
            "text": {"body": text},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._api_url,
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
            if resp.is_error:
                logger.error(
                    "Hosted WhatsApp API rejected message (%d): %s",
                    resp.status_code, resp.text,
                )
                return False
            logger.info("WhatsApp message sent via hosted API")
            return True
        except Exception as exc:
            logger.error("Hosted WhatsApp API request failed: %s", exc)
            return False

    def format_reminder_message(self, payload: NotificationPayload) -> str:
        """Plain text with *bold* markers, as WhatsApp renders them."""
        message = f"🔔 *{payload.title}*\n\n{payload.message}"

        if payload.task_title:
            message += f"\n\n📋 Task: {payload.task_title}"

        if payload.due_date:
            due = payload.due_date.astimezone(local_tz())
            message += f"\n⏰ Due: {due:%Y-%m-%d} at {due:%H:%M}"

        if payload.link:
            message += f"\n\n🔗 {payload.link}"

        return message
