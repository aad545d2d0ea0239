"""
WhatsApp session manager — one QR-paired WhatsApp Web session per process.

State machine:

    DISCONNECTED --initialize--> INITIALIZING --QR--> QR_READY --READY--> CONNECTED

INITIALIZING may also go straight to CONNECTED when a stored pairing is
reused. AUTH_FAILURE or DISCONNECTED events force DISCONNECTED from any
state and release the driver. Nothing reaches CONNECTED without passing
through INITIALIZING.

The instance is built by the process bootstrap and handed to whoever needs
it. Driver callbacks arrive as SessionEvents on a queue and are applied one
at a time under the same lock that guards initialize() and logout().
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

import qrcode

if TYPE_CHECKING:
    from taskflow.ports.session_port import SessionDriver

logger = logging.getLogger(__name__)

CHAT_SUFFIX = "@c.us"


class SessionError(Exception):
    """Raised when the messaging session cannot be started."""


class SessionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    INITIALIZING = "INITIALIZING"
    QR_READY = "QR_READY"
    CONNECTED = "CONNECTED"


ACTIVE_STATES = frozenset(
    {SessionState.INITIALIZING, SessionState.QR_READY, SessionState.CONNECTED}
)


class SessionEventKind(str, Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class SessionEvent:
    """Something the driver observed. payload is the raw QR code or a reason."""

    kind: SessionEventKind
    payload: str = ""


def next_state(state: SessionState, event: SessionEvent) -> SessionState:
    """Pure transition function; events that make no sense are ignored."""
    kind = event.kind
    if kind in (SessionEventKind.AUTH_FAILURE, SessionEventKind.DISCONNECTED):
        return SessionState.DISCONNECTED
    if state not in (SessionState.INITIALIZING, SessionState.QR_READY):
        return state
    if kind is SessionEventKind.QR:
        return SessionState.QR_READY
    if kind is SessionEventKind.READY:
        return SessionState.CONNECTED
    return state


def normalize_chat_id(to: str) -> str:
    """'+972 (54) 123-4567' -> '972541234567@c.us'."""
    return re.sub(r"\D", "", to) + CHAT_SUFFIX


def render_qr_data_url(code: str) -> str:
    """Render a pairing code as a PNG data URL an operator can scan."""
    img = qrcode.make(code)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class WhatsAppSession:
    """Owns the driver handle, the pairing code and the session state."""

    def __init__(
        self,
        driver_factory: Callable[[], SessionDriver],
        qr_renderer: Callable[[str], str] = render_qr_data_url,
    ) -> None:
        self._driver_factory = driver_factory
        self._qr_renderer = qr_renderer
        self._driver: SessionDriver | None = None
        self._state = SessionState.DISCONNECTED
        self._qr = ""
        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[tuple[int, SessionEvent]] = asyncio.Queue()
        self._generation = 0
        self._pump: asyncio.Task | None = None

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Start consuming driver events. Called once by the bootstrap."""
        if self._pump is None or self._pump.done():
            self._pump = asyncio.create_task(self._pump_events(), name="whatsapp-session-events")
            logger.info("WhatsApp session event pump started")

    async def stop(self) -> None:
        """Stop the pump and tear down any live driver."""
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        async with self._lock:
            await self._teardown()
            self._set_state(SessionState.DISCONNECTED)
            self._qr = ""
        logger.info("WhatsApp session stopped")

    # -- queries -----------------------------------------------------------

    def status(self) -> SessionState:
        return self._state

    def current_qr(self) -> str:
        return self._qr

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    # -- operations --------------------------------------------------------

    async def initialize(self) -> None:
        """Begin a new session unless one is already active.

        Raises whatever the driver raised if it cannot start; the state is
        DISCONNECTED afterwards.
        """
        async with self._lock:
            if self._state in ACTIVE_STATES:
                logger.info("WhatsApp session already active (%s)", self._state.value)
                return

            if self._driver is not None:
                logger.info("Cleaning up stale WhatsApp session handle")
                await self._teardown()

            logger.info("Initializing WhatsApp session...")
            self._set_state(SessionState.INITIALIZING)
            self._generation += 1
            generation = self._generation

            try:
                self._driver = self._driver_factory()
                await self._driver.start(lambda event: self._enqueue(generation, event))
            except Exception as exc:
                logger.error("WhatsApp session initialization failed: %s", exc)
                self._set_state(SessionState.DISCONNECTED)
                raise

    async def send(self, to: str, message: str) -> bool:
        """Send a text message. Never raises; False means not delivered."""
        driver = self._driver
        if driver is None or self._state is not SessionState.CONNECTED:
            logger.warning("Cannot send WhatsApp message: session not connected")
            return False

        chat_id = normalize_chat_id(to)
        try:
            await driver.send_message(chat_id, message)
            return True
        except Exception as exc:
            logger.error("WhatsApp send to %s failed: %s", chat_id, exc)
            return False

    async def logout(self) -> None:
        """Unpair the device and drop the session."""
        async with self._lock:
            driver = self._driver
            if driver is not None:
                try:
                    await driver.logout()
                except Exception as exc:
                    logger.error("WhatsApp logout failed: %s", exc)
            self._driver = None
            self._generation += 1
            self._qr = ""
            self._set_state(SessionState.DISCONNECTED)
        logger.info("WhatsApp session logged out")

    async def handle_event(self, event: SessionEvent) -> None:
        """Apply one driver event to the state machine."""
        async with self._lock:
            await self._apply(event)

    async def wait_idle(self) -> None:
        """Block until every queued driver event has been applied."""
        await self._events.join()

    # -- internals ---------------------------------------------------------

    def _enqueue(self, generation: int, event: SessionEvent) -> None:
        self._events.put_nowait((generation, event))

    async def _pump_events(self) -> None:
        while True:
            generation, event = await self._events.get()
            try:
                if generation != self._generation:
                    logger.debug("Dropping %s event from a previous session", event.kind.value)
                    continue
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to apply WhatsApp session event %s", event.kind.value)
            finally:
                self._events.task_done()

    async def _apply(self, event: SessionEvent) -> None:
        new_state = next_state(self._state, event)
        kind = event.kind

        if kind is SessionEventKind.QR and new_state is SessionState.QR_READY:
            logger.info("WhatsApp pairing code received")
            try:
                self._qr = self._qr_renderer(event.payload)
            except Exception as exc:
                logger.error("Failed to render WhatsApp pairing code: %s", exc)
                return
        elif kind is SessionEventKind.READY and new_state is SessionState.CONNECTED:
            logger.info("WhatsApp session is ready")
            self._qr = ""
        elif kind is SessionEventKind.AUTHENTICATED:
            logger.info("WhatsApp session authenticated")
        elif kind is SessionEventKind.AUTH_FAILURE:
            logger.error("WhatsApp authentication failure: %s", event.payload)
            await self._teardown()
            self._qr = ""
        elif kind is SessionEventKind.DISCONNECTED:
            logger.warning("WhatsApp disconnected: %s", event.payload)
            await self._teardown()
            self._qr = ""

        self._set_state(new_state)

    async def _teardown(self) -> None:
        """Best-effort destroy of the current driver; errors are logged."""
        driver = self._driver
        self._driver = None
        self._generation += 1
        if driver is None:
            return
        try:
            await driver.destroy()
        except Exception as exc:
            logger.error("WhatsApp session cleanup error: %s", exc)

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug("WhatsApp session %s -> %s", self._state.value, state.value)
            self._state = state
