"""Session port — the raw chat-network client behind the WhatsApp session.

WhatsAppSession owns the lifecycle and state; a driver only talks to the
network and reports what happened through the emit callback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from taskflow.integrations.whatsapp_session import SessionEvent


class SessionDriver(Protocol):
    """Abstract messaging-session client used by WhatsAppSession."""

    async def start(self, emit: Callable[[SessionEvent], None]) -> None: ...

    async def send_message(self, chat_id: str, text: str) -> None: ...

    async def logout(self) -> None: ...

    async def destroy(self) -> None: ...
