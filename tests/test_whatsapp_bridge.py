"""Tests for taskflow.adapters.whatsapp_bridge — bridge status polling."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from taskflow.adapters.whatsapp_bridge import WhatsAppBridgeDriver
from taskflow.integrations.whatsapp_session import (
    SessionError,
    SessionEventKind,
    SessionState,
    WhatsAppSession,
)


def _response(payload=None):
    resp = MagicMock()
    resp.json.return_value = payload or {}
    resp.raise_for_status = MagicMock()
    return resp


def _make_driver(mock_client, poll_interval=0):
    with patch("taskflow.adapters.whatsapp_bridge.httpx.AsyncClient", return_value=mock_client):
        return WhatsAppBridgeDriver(
            "http://bridge.local/", session_name="main", api_key="k", poll_interval=poll_interval,
        )


def _client_with_statuses(*payloads):
    """Mock client whose GETs return the given payloads in order."""
    client = MagicMock()
    client.get = AsyncMock(side_effect=[_response(p) for p in payloads])
    client.post = AsyncMock(return_value=_response())
    client.aclose = AsyncMock()
    return client


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_scan_qr_emits_qr_event(self):
        client = _client_with_statuses({"status": "SCAN_QR_CODE"}, {"value": "2@code"})
        driver = _make_driver(client)
        events = []

        keep_going = await driver.poll_once(events.append)

        assert keep_going is True
        assert [e.kind for e in events] == [SessionEventKind.QR]
        assert events[0].payload == "2@code"
        client.get.assert_any_call("/api/main/auth/qr", params={"format": "raw"})

    @pytest.mark.asyncio
    async def test_same_qr_not_emitted_twice(self):
        client = _client_with_statuses(
            {"status": "SCAN_QR_CODE"}, {"value": "2@code"},
            {"status": "SCAN_QR_CODE"}, {"value": "2@code"},
        )
        driver = _make_driver(client)
        events = []

        await driver.poll_once(events.append)
        await driver.poll_once(events.append)

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_working_emits_ready_once(self):
        client = _client_with_statuses({"status": "WORKING"}, {"status": "WORKING"})
        driver = _make_driver(client)
        events = []

        await driver.poll_once(events.append)
        await driver.poll_once(events.append)

        assert [e.kind for e in events] == [
            SessionEventKind.AUTHENTICATED, SessionEventKind.READY,
        ]

    @pytest.mark.asyncio
    async def test_failed_emits_auth_failure(self):
        client = _client_with_statuses({"status": "FAILED"})
        driver = _make_driver(client)
        events = []

        await driver.poll_once(events.append)

        assert events[0].kind is SessionEventKind.AUTH_FAILURE

    @pytest.mark.asyncio
    async def test_stopped_ends_polling(self):
        client = _client_with_statuses({"status": "STOPPED"})
        driver = _make_driver(client)
        events = []

        keep_going = await driver.poll_once(events.append)

        assert keep_going is False
        assert events[0].kind is SessionEventKind.DISCONNECTED

    @pytest.mark.asyncio
    async def test_leaving_working_reports_disconnect(self):
        client = _client_with_statuses({"status": "WORKING"}, {"status": "SCAN_QR_CODE"})
        driver = _make_driver(client)
        events = []

        await driver.poll_once(events.append)
        keep_going = await driver.poll_once(events.append)

        assert keep_going is False
        assert [e.kind for e in events] == [
            SessionEventKind.AUTHENTICATED,
            SessionEventKind.READY,
            SessionEventKind.DISCONNECTED,
        ]


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_transient_http_error_keeps_polling(self):
        client = _client_with_statuses()
        client.get = AsyncMock(side_effect=[
            httpx.ConnectError("refused"), _response({"status": "STOPPED"}),
        ])
        driver = _make_driver(client)
        events = []

        await driver.start(events.append)
        await driver._poller

        assert [e.kind for e in events] == [SessionEventKind.DISCONNECTED]
        assert client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_unreadable_response_ends_with_disconnect(self):
        bad = _response()
        bad.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        client = _client_with_statuses()
        client.get = AsyncMock(return_value=bad)
        driver = _make_driver(client)
        events = []

        await driver.start(events.append)
        await driver._poller

        assert [e.kind for e in events] == [SessionEventKind.DISCONNECTED]
        assert "Expecting value" in events[0].payload

    @pytest.mark.asyncio
    async def test_session_can_reinitialize_after_poll_failure(self):
        bad = _response()
        bad.json.side_effect = ValueError("Expecting value")
        first = _client_with_statuses()
        first.get = AsyncMock(return_value=bad)
        second = _client_with_statuses()
        second.get = AsyncMock(return_value=_response({"status": "STARTING"}))
        drivers = [_make_driver(first), _make_driver(second)]
        session = WhatsAppSession(driver_factory=lambda: drivers.pop(0))

        await session.start()
        try:
            await session.initialize()
            await session._driver._poller
            await session.wait_idle()
            assert session.status() is SessionState.DISCONNECTED
            first.aclose.assert_awaited_once()

            await session.initialize()
            assert session.status() is SessionState.INITIALIZING
        finally:
            await session.stop()


class TestDriverCommands:
    @pytest.mark.asyncio
    async def test_send_message_posts_text(self):
        client = _client_with_statuses()
        driver = _make_driver(client)

        await driver.send_message("15551234567@c.us", "hello")

        client.post.assert_awaited_once_with(
            "/api/sendText",
            json={"session": "main", "chatId": "15551234567@c.us", "text": "hello"},
        )

    @pytest.mark.asyncio
    async def test_start_failure_raises_session_error(self):
        client = _client_with_statuses()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        driver = _make_driver(client)

        with pytest.raises(SessionError):
            await driver.start(lambda e: None)

    @pytest.mark.asyncio
    async def test_destroy_stops_session_and_closes_client(self):
        client = _client_with_statuses()
        driver = _make_driver(client)

        await driver.destroy()

        client.post.assert_awaited_once_with("/api/sessions/main/stop")
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_logout_calls_bridge(self):
        client = _client_with_statuses()
        driver = _make_driver(client)

        await driver.logout()

        client.post.assert_awaited_once_with("/api/sessions/main/logout")
        client.aclose.assert_awaited_once()
