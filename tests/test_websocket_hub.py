"""Tests for the WebSocket hub."""

import asyncio
from datetime import UTC, datetime

from automation_gateway.domain.events import EventEnvelope, QrReceived, Ready
from automation_gateway.services.websocket_hub import WebSocketHub
from tests.conftest import FakeWebSocket, settle, subscribe

_NOW = datetime(2024, 1, 1, tzinfo=UTC)


def _envelope(session_id: str = "alpha", qr: str = "qr-1") -> EventEnvelope:
    return EventEnvelope.wrap(session_id, QrReceived(qr=qr), _NOW)


def test_unknown_session_is_rejected_without_accept() -> None:
    hub = WebSocketHub()
    websocket = FakeWebSocket()

    asyncio.run(hub.serve("ghost", websocket))  # type: ignore[arg-type]

    assert not websocket.accepted
    assert websocket.closed_code == 1000


def test_broadcast_reaches_every_subscriber() -> None:
    hub = WebSocketHub(close_timeout=1.0)

    async def scenario() -> None:
        hub.ensure("alpha")
        hub.ensure("beta")
        first, first_task = await subscribe(hub, "alpha")
        second, second_task = await subscribe(hub, "alpha")
        other, other_task = await subscribe(hub, "beta")
        assert hub.connection_count("alpha") == 2

        hub.broadcast(_envelope())
        hub.broadcast(EventEnvelope.wrap("alpha", Ready(), _NOW))
        await settle()

        expected = [
            {"dataType": "qr", "data": {"qr": "qr-1"}, "sessionId": "alpha"},
            {"dataType": "ready", "data": {}, "sessionId": "alpha"},
        ]
        assert first.sent == expected
        assert second.sent == expected
        assert other.sent == []

        await hub.close_all()
        await asyncio.wait_for(
            asyncio.gather(first_task, second_task, other_task), 1.0
        )

    asyncio.run(scenario())


def test_broadcast_without_entry_is_noop() -> None:
    hub = WebSocketHub()

    hub.broadcast(_envelope("ghost"))

    assert not hub.has_entry("ghost")


def test_failing_subscriber_does_not_affect_others() -> None:
    hub = WebSocketHub(close_timeout=1.0)

    async def scenario() -> None:
        hub.ensure("alpha")
        broken, broken_task = await subscribe(hub, "alpha")
        healthy, _ = await subscribe(hub, "alpha")
        broken.fail_send = True

        hub.broadcast(_envelope())
        await asyncio.wait_for(broken_task, 1.0)
        hub.broadcast(_envelope(qr="qr-2"))
        await settle()

        assert [m["data"] for m in healthy.sent] == [{"qr": "qr-1"}, {"qr": "qr-2"}]
        assert hub.connection_count("alpha") == 1
        assert broken.closed_code == 1001

        await hub.close("alpha")

    asyncio.run(scenario())


def test_slow_subscriber_is_dropped_when_queue_overflows() -> None:
    hub = WebSocketHub(send_queue_size=1, close_timeout=1.0)

    async def scenario() -> None:
        hub.ensure("alpha")
        slow, slow_task = await subscribe(hub, "alpha")
        fast, _ = await subscribe(hub, "alpha")
        slow.block_send = True

        for index in range(3):
            hub.broadcast(_envelope(qr=f"qr-{index}"))
            await settle()

        await asyncio.wait_for(slow_task, 1.0)
        assert len(fast.sent) == 3
        assert slow.sent == []
        assert hub.connection_count("alpha") == 1

        await hub.close("alpha")

    asyncio.run(scenario())


def test_peer_disconnect_removes_subscriber() -> None:
    hub = WebSocketHub()

    async def scenario() -> None:
        hub.ensure("alpha")
        websocket, serving = await subscribe(hub, "alpha")

        websocket.disconnect()
        await asyncio.wait_for(serving, 1.0)

        assert hub.connection_count("alpha") == 0
        assert hub.has_entry("alpha")
        assert websocket.closed_code is None

    asyncio.run(scenario())


def test_close_terminates_subscribers_and_removes_entry() -> None:
    hub = WebSocketHub(close_timeout=1.0)

    async def scenario() -> None:
        hub.ensure("alpha")
        websocket, serving = await subscribe(hub, "alpha")

        await hub.close("alpha")

        assert serving.done()
        assert websocket.closed_code == 1001
        assert not hub.has_entry("alpha")

        late = FakeWebSocket()
        await hub.serve("alpha", late)  # type: ignore[arg-type]
        assert not late.accepted

    asyncio.run(scenario())


def test_ensure_keeps_existing_subscribers() -> None:
    hub = WebSocketHub(close_timeout=1.0)

    async def scenario() -> None:
        hub.ensure("alpha")
        await subscribe(hub, "alpha")

        hub.ensure("alpha")

        assert hub.connection_count("alpha") == 1
        await hub.close("alpha")

    asyncio.run(scenario())
