"""WhatsApp Web bridge driver — implements SessionDriver over HTTP.

Talks to a self-hosted WhatsApp Web bridge that keeps the browser session
and exposes it as a small REST API. The bridge has no push channel, so the
driver polls the session status and turns each change into a SessionEvent:

    SCAN_QR_CODE -> QR (raw pairing code)
    WORKING      -> READY (leaving WORKING again -> DISCONNECTED)
    FAILED       -> AUTH_FAILURE
    STOPPED      -> DISCONNECTED (polling ends)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from taskflow.integrations.whatsapp_session import (
    SessionError,
    SessionEvent,
    SessionEventKind,
)

logger = logging.getLogger(__name__)

_DEFAULT_POLL_SECONDS = 2.0


class WhatsAppBridgeDriver:
    """HTTP bridge implementation of SessionDriver."""

    def __init__(
        self,
        base_url: str,
        session_name: str = "default",
        api_key: str = "",
        poll_interval: float = _DEFAULT_POLL_SECONDS,
        timeout: float = 10.0,
    ) -> None:
        headers = {"X-Api-Key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout,
        )
        self._session = session_name
        self._poll_interval = poll_interval
        self._poller: asyncio.Task | None = None
        self._last_status = ""
        self._last_qr = ""

    async def start(self, emit: Callable[[SessionEvent], None]) -> None:
        try:
            resp = await self._client.post("/api/sessions/start", json={"name": self._session})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SessionError(f"WhatsApp bridge refused to start session: {exc}") from exc

        logger.info("WhatsApp bridge session '%s' starting", self._session)
        self._poller = asyncio.create_task(self._poll(emit), name="whatsapp-bridge-poll")

    async def send_message(self, chat_id: str, text: str) -> None:
        resp = await self._client.post(
            "/api/sendText",
            json={"session": self._session, "chatId": chat_id, "text": text},
        )
        resp.raise_for_status()

    async def logout(self) -> None:
        await self._stop_polling()
        try:
            resp = await self._client.post(f"/api/sessions/{self._session}/logout")
            resp.raise_for_status()
        finally:
            await self._client.aclose()

    async def destroy(self) -> None:
        await self._stop_polling()
        try:
            resp = await self._client.post(f"/api/sessions/{self._session}/stop")
            resp.raise_for_status()
        finally:
            await self._client.aclose()

    async def poll_once(self, emit: Callable[[SessionEvent], None]) -> bool:
        """Check the bridge once. Returns False when polling should end."""
        resp = await self._client.get(f"/api/sessions/{self._session}")
        resp.raise_for_status()
        status = resp.json().get("status", "")

        if self._last_status == "WORKING" and status not in ("WORKING", "STOPPED"):
            # pairing lost; the session has to be re-initialized
            emit(SessionEvent(SessionEventKind.DISCONNECTED, f"bridge left WORKING ({status})"))
            self._last_status = status
            return False

        if status == "SCAN_QR_CODE":
            qr_resp = await self._client.get(
                f"/api/{self._session}/auth/qr", params={"format": "raw"},
            )
            qr_resp.raise_for_status()
            code = qr_resp.json().get("value", "")
            if code and code != self._last_qr:
                self._last_qr = code
                emit(SessionEvent(SessionEventKind.QR, code))
        elif status != self._last_status:
            if status == "WORKING":
                emit(SessionEvent(SessionEventKind.AUTHENTICATED))
                emit(SessionEvent(SessionEventKind.READY))
            elif status == "FAILED":
                emit(SessionEvent(SessionEventKind.AUTH_FAILURE, "bridge reported FAILED"))
            elif status == "STOPPED":
                emit(SessionEvent(SessionEventKind.DISCONNECTED, "bridge session stopped"))
                self._last_status = status
                return False

        self._last_status = status
        return True

    async def _poll(self, emit: Callable[[SessionEvent], None]) -> None:
        while True:
            try:
                if not await self.poll_once(emit):
                    return
            except httpx.HTTPError as exc:
                logger.warning("WhatsApp bridge poll failed: %s", exc)
            except Exception as exc:
                logger.exception("WhatsApp bridge returned an unusable response")
                emit(SessionEvent(SessionEventKind.DISCONNECTED, f"bridge poll error: {exc}"))
                return
            await asyncio.sleep(self._poll_interval)

    async def _stop_polling(self) -> None:
        if self._poller is None:
            return
        self._poller.cancel()
        try:
            await self._poller
        except asyncio.CancelledError:
            pass
        self._poller = None
