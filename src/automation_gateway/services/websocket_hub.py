"""Per-session fan-out of envelopes to WebSocket subscribers."""

import asyncio
import logging
from dataclasses import dataclass, field

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from automation_gateway.domain.events import EventEnvelope

logger = logging.getLogger(__name__)

_CLOSE_GOING_AWAY = 1001


@dataclass(eq=False)
class _Subscriber:
    websocket: WebSocket
    queue: asyncio.Queue[dict[str, object]]
    done: asyncio.Event = field(default_factory=asyncio.Event)
    writer: asyncio.Task[None] | None = None
    stopped: bool = False

    def stop(self) -> None:
        self.stopped = True
        if self.writer is not None:
            self.writer.cancel()


@dataclass
class WebSocketHub:
    """Tracks subscriber connections per session id.

    Every subscriber owns a bounded outbound queue drained by its own writer
    task, so ``broadcast`` never awaits a socket and a stalled peer cannot
    delay the others. A subscriber whose queue overflows is dropped.
    """

    send_queue_size: int = 100
    close_timeout: float = 5.0
    _entries: dict[str, set[_Subscriber]] = field(
        default_factory=dict, init=False, repr=False
    )

    def ensure(self, session_id: str) -> None:
        """Create the entry for a session if it does not exist yet."""
        self._entries.setdefault(session_id, set())

    def has_entry(self, session_id: str) -> bool:
        return session_id in self._entries

    def connection_count(self, session_id: str) -> int:
        return len(self._entries.get(session_id, ()))

    async def serve(self, session_id: str, websocket: WebSocket) -> None:
        """Run one subscriber connection until it ends.

        Connections for unknown session ids are closed without being
        accepted.
        """
        entry = self._entries.get(session_id)
        if entry is None:
            logger.debug(
                "Rejecting WebSocket upgrade", extra={"session_id": session_id}
            )
            await websocket.close()
            return

        subscriber = _Subscriber(
            websocket=websocket,
            queue=asyncio.Queue(maxsize=self.send_queue_size),
        )
        # Registered before accept so nothing emitted after the handshake is lost.
        entry.add(subscriber)
        try:
            await websocket.accept()
            logger.debug(
                "WebSocket connection established", extra={"session_id": session_id}
            )
            if subscriber.stopped:
                return
            subscriber.writer = asyncio.create_task(
                self._write(session_id, subscriber)
            )
            reader = asyncio.create_task(self._read(websocket))
            tasks = {subscriber.writer, reader}
            try:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            entry.discard(subscriber)
            await _close_socket(session_id, websocket)
            subscriber.done.set()
            logger.debug(
                "WebSocket connection closed", extra={"session_id": session_id}
            )

    def broadcast(self, envelope: EventEnvelope) -> None:
        """Queue an envelope for every subscriber of its session."""
        entry = self._entries.get(envelope.session_id)
        if not entry:
            return
        message = envelope.to_message()
        for subscriber in list(entry):
            try:
                subscriber.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping slow WebSocket subscriber",
                    extra={
                        "session_id": envelope.session_id,
                        "data_type": envelope.data_type,
                    },
                )
                entry.discard(subscriber)
                subscriber.stop()

    async def close(self, session_id: str) -> None:
        """Terminate all subscribers of a session and remove its entry."""
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return
        subscribers = list(entry)
        for subscriber in subscribers:
            subscriber.stop()
        if not subscribers:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*(s.done.wait() for s in subscribers)),
                timeout=self.close_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Timed out closing WebSocket subscribers",
                extra={"session_id": session_id},
            )

    async def close_all(self) -> None:
        """Close every entry."""
        for session_id in list(self._entries):
            await self.close(session_id)

    async def _write(self, session_id: str, subscriber: _Subscriber) -> None:
        while True:
            message = await subscriber.queue.get()
            try:
                await subscriber.websocket.send_json(message)
            except Exception:
                logger.warning(
                    "Failed to send WebSocket message",
                    exc_info=True,
                    extra={
                        "session_id": session_id,
                        "data_type": message.get("dataType"),
                    },
                )
                return

    async def _read(self, websocket: WebSocket) -> None:
        # Subscribers only listen; inbound frames are read to observe disconnects.
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return


async def _close_socket(session_id: str, websocket: WebSocket) -> None:
    if (
        websocket.application_state != WebSocketState.CONNECTED
        or websocket.client_state != WebSocketState.CONNECTED
    ):
        return
    try:
        await websocket.close(code=_CLOSE_GOING_AWAY)
    except Exception:
        logger.debug(
            "WebSocket already closed",
            exc_info=True,
            extra={"session_id": session_id},
        )
