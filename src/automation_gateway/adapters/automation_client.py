"""Interfaces between the registry and automation clients."""

from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from automation_gateway.domain.events import AutomationEvent


class ClientEventSink(Protocol):
    """Receives everything a client reports about itself."""

    def emit(self, event: AutomationEvent) -> None:
        """Deliver one event, in emission order."""

    def context_ready(self) -> None:
        """Signal that the client's execution context exists."""


class AutomationClient(Protocol):
    """Capability object driving one automated identity."""

    async def initialize(self) -> None:
        """Start the client; events flow to the sink afterwards."""

    async def destroy(self) -> None:
        """Release the client without signing out."""

    async def logout(self) -> None:
        """Sign out and release the client."""

    async def get_state(self) -> str | None:
        """Return the live connection state reported by the client."""

    async def send_message(
        self,
        chat_id: str,
        content: object,
        options: dict[str, object] | None = None,
    ) -> dict[str, object]:
        """Send a message and return the sent message payload."""

    async def get_chats(self) -> list[dict[str, object]]:
        """Return all chats."""

    async def get_chat_by_id(self, chat_id: str) -> dict[str, object]:
        """Return one chat."""

    async def get_contacts(self) -> list[dict[str, object]]:
        """Return all contacts."""

    async def get_contact_by_id(self, contact_id: str) -> dict[str, object]:
        """Return one contact."""

    async def send_seen(self, chat_id: str) -> bool:
        """Mark a conversation as read."""

    async def download_media(self, message_id: str) -> dict[str, object] | None:
        """Download the media attached to a message, if still available."""

    async def request_pairing_code(
        self, phone_number: str, show_notification: bool = True
    ) -> str:
        """Request a pairing code as an alternative to QR pairing."""


ClientFactory = Callable[[str, Path, ClientEventSink], AutomationClient]
