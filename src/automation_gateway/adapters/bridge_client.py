"""Automation client backed by an external automation worker.

The worker runs the actual automation runtime. Commands are sent as
``POST {base_url}/sessions/{id}/{operation}`` with a JSON body and answer
``{"result": ...}``; events arrive on ``{ws_url}/sessions/{id}/events`` as
JSON frames ``{"event": <name>, "data": {...}}``.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from automation_gateway.adapters.automation_client import (
    AutomationClient,
    ClientEventSink,
    ClientFactory,
)
from automation_gateway.domain.events import Disconnected, event_from_wire

logger = logging.getLogger(__name__)


def _default_ws_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url.removeprefix("https://")
    return "ws://" + base_url.removeprefix("http://")


@dataclass
class HttpxBridgeClient(AutomationClient):
    """Drives one session on the automation worker."""

    session_id: str
    data_path: Path
    sink: ClientEventSink
    base_url: str
    ws_url: str
    http_client: httpx.AsyncClient
    timeout: float = 30.0
    _connection: Any = field(default=None, init=False, repr=False)
    _pump: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _closing: bool = field(default=False, init=False, repr=False)

    @classmethod
    def factory(
        cls,
        base_url: str,
        http_client: httpx.AsyncClient,
        ws_url: str | None = None,
        timeout: float = 30.0,
    ) -> ClientFactory:
        """Return a factory building bridge clients that share one HTTP pool."""
        resolved_base = base_url.rstrip("/")
        resolved_ws = (ws_url or _default_ws_url(resolved_base)).rstrip("/")

        def build(
            session_id: str, data_path: Path, sink: ClientEventSink
        ) -> "HttpxBridgeClient":
            return cls(
                session_id=session_id,
                data_path=data_path,
                sink=sink,
                base_url=resolved_base,
                ws_url=resolved_ws,
                http_client=http_client,
                timeout=timeout,
            )

        return build

    async def initialize(self) -> None:
        """Start the remote session and subscribe to its events."""
        await self._call("start", {"dataPath": str(self.data_path)})
        if self._closing:
            return
        connection = await websockets.connect(
            f"{self.ws_url}/sessions/{self.session_id}/events"
        )
        # The client may have been released while the stream was opening.
        if self._closing:
            await connection.close()
            return
        self._connection = connection
        self.sink.context_ready()
        self._pump = asyncio.get_running_loop().create_task(self._read_events())

    async def destroy(self) -> None:
        """Stop the remote session without signing out."""
        try:
            await self._call("stop")
        finally:
            await self._close_stream()

    async def logout(self) -> None:
        """Sign out and stop the remote session."""
        try:
            await self._call("logout")
        finally:
            await self._close_stream()

    async def get_state(self) -> str | None:
        result = await self._call("getState")
        return str(result) if result is not None else None

    async def send_message(
        self,
        chat_id: str,
        content: object,
        options: dict[str, object] | None = None,
    ) -> dict[str, object]:
        return await self._call(
            "sendMessage",
            {"chatId": chat_id, "content": content, "options": options or {}},
        )

    async def get_chats(self) -> list[dict[str, object]]:
        return await self._call("getChats")

    async def get_chat_by_id(self, chat_id: str) -> dict[str, object]:
        return await self._call("getChatById", {"chatId": chat_id})

    async def get_contacts(self) -> list[dict[str, object]]:
        return await self._call("getContacts")

    async def get_contact_by_id(self, contact_id: str) -> dict[str, object]:
        return await self._call("getContactById", {"contactId": contact_id})

    async def send_seen(self, chat_id: str) -> bool:
        return bool(await self._call("sendSeen", {"chatId": chat_id}))

    async def download_media(self, message_id: str) -> dict[str, object] | None:
        return await self._call("downloadMedia", {"messageId": message_id})

    async def request_pairing_code(
        self, phone_number: str, show_notification: bool = True
    ) -> str:
        result = await self._call(
            "requestPairingCode",
            {"phoneNumber": phone_number, "showNotification": show_notification},
        )
        return str(result)

    async def _call(
        self, operation: str, payload: dict[str, object] | None = None
    ) -> Any:
        url = f"{self.base_url}/sessions/{self.session_id}/{operation}"
        response = await self.http_client.post(
            url, json=payload or {}, timeout=self.timeout
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json().get("result")

    async def _read_events(self) -> None:
        reason = "stream_closed"
        try:
            async for raw in self._connection:
                self._handle_frame(raw)
        except ConnectionClosed as exc:
            reason = f"stream_closed: {exc}"
        if not self._closing:
            logger.warning(
                "Event stream ended unexpectedly", extra={"session_id": self.session_id}
            )
            self.sink.emit(Disconnected(reason=reason))

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if not isinstance(frame, dict):
            logger.warning(
                "Discarding malformed event frame",
                extra={"session_id": self.session_id},
            )
            return
        data = frame.get("data")
        event = event_from_wire(
            str(frame.get("event", "")), data if isinstance(data, dict) else {}
        )
        if event is None:
            logger.debug(
                "Ignoring unknown event %s",
                frame.get("event"),
                extra={"session_id": self.session_id},
            )
            return
        self.sink.emit(event)

    async def _close_stream(self) -> None:
        self._closing = True
        if self._pump is not None:
            self._pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump
            self._pump = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
