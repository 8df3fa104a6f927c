"""Shared test fixtures."""

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import partial
from pathlib import Path

import pytest
from starlette.websockets import WebSocketState

from automation_gateway.adapters.automation_client import (
    AutomationClient,
    ClientEventSink,
)
from automation_gateway.adapters.credential_store import CredentialStore
from automation_gateway.adapters.webhook_client import WebhookClient
from automation_gateway.config import Settings, resolve_webhook_url
from automation_gateway.containers import AppContainer
from automation_gateway.domain.events import AutomationEvent
from automation_gateway.services.callbacks import CallbackFilter
from automation_gateway.services.restore import StartupRestorer
from automation_gateway.services.sessions import SessionRegistry
from automation_gateway.services.sweeper import InactivitySweeper
from automation_gateway.services.webhooks import WebhookDispatcher
from automation_gateway.services.websocket_hub import WebSocketHub


@dataclass(eq=False)
class FakeAutomationClient(AutomationClient):
    """Automation client double driven by the test."""

    session_id: str
    data_path: Path
    sink: ClientEventSink
    ready_on_initialize: bool = True
    fail_initialize: bool = False
    initialized: bool = False
    destroyed: bool = False
    logged_out: bool = False
    state: str | None = "CONNECTED"
    seen: list[str] = field(default_factory=list)
    sent: list[tuple[str, object, dict[str, object] | None]] = field(
        default_factory=list
    )
    media: dict[str, object] | None = None
    fail_send_seen: bool = False
    block_initialize: bool = False
    initialize_cancelled: bool = False

    def emit(self, event: AutomationEvent) -> None:
        self.sink.emit(event)

    async def initialize(self) -> None:
        if self.fail_initialize:
            raise RuntimeError("browser failed to launch")
        if self.block_initialize:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.initialize_cancelled = True
                raise
        self.initialized = True
        if self.ready_on_initialize:
            self.sink.context_ready()

    async def destroy(self) -> None:
        self.destroyed = True

    async def logout(self) -> None:
        self.logged_out = True

    async def get_state(self) -> str | None:
        return self.state

    async def send_message(
        self,
        chat_id: str,
        content: object,
        options: dict[str, object] | None = None,
    ) -> dict[str, object]:
        self.sent.append((chat_id, content, options))
        return {"id": "msg-1", "body": content}

    async def get_chats(self) -> list[dict[str, object]]:
        return [{"id": "chat-1"}]

    async def get_chat_by_id(self, chat_id: str) -> dict[str, object]:
        return {"id": chat_id}

    async def get_contacts(self) -> list[dict[str, object]]:
        return [{"id": "contact-1"}]

    async def get_contact_by_id(self, contact_id: str) -> dict[str, object]:
        return {"id": contact_id}

    async def send_seen(self, chat_id: str) -> bool:
        if self.fail_send_seen:
            raise RuntimeError("chat gone")
        self.seen.append(chat_id)
        return True

    async def download_media(self, message_id: str) -> dict[str, object] | None:
        return self.media

    async def request_pairing_code(
        self, phone_number: str, show_notification: bool = True
    ) -> str:
        return "ABCD-EFGH"


@dataclass
class FakeClientFactory:
    """Builds fake clients and remembers every one of them."""

    failing_ids: set[str] = field(default_factory=set)
    ready_on_initialize: bool = True
    fail_initialize: bool = False
    block_initialize: bool = False
    failing_initialize_ids: set[str] = field(default_factory=set)
    unready_ids: set[str] = field(default_factory=set)
    clients: dict[str, list[FakeAutomationClient]] = field(default_factory=dict)

    def __call__(
        self, session_id: str, data_path: Path, sink: ClientEventSink
    ) -> FakeAutomationClient:
        if session_id in self.failing_ids:
            raise RuntimeError("corrupt credentials")
        client = FakeAutomationClient(
            session_id=session_id,
            data_path=data_path,
            sink=sink,
            ready_on_initialize=(
                self.ready_on_initialize and session_id not in self.unready_ids
            ),
            fail_initialize=(
                self.fail_initialize or session_id in self.failing_initialize_ids
            ),
            block_initialize=self.block_initialize,
        )
        self.clients.setdefault(session_id, []).append(client)
        return client

    def latest(self, session_id: str) -> FakeAutomationClient:
        return self.clients[session_id][-1]


@dataclass
class InMemoryCredentialStore(CredentialStore):
    """In-memory credential store for tests."""

    session_ids: set[str] = field(default_factory=set)
    deleted: list[str] = field(default_factory=list)
    failing_deletes: set[str] = field(default_factory=set)

    def ensure(self, session_id: str) -> Path:
        self.session_ids.add(session_id)
        return Path("/tmp/sessions") / f"session-{session_id}"  # noqa: S108

    def delete(self, session_id: str) -> None:
        if session_id in self.failing_deletes:
            raise OSError("permission denied")
        self.session_ids.discard(session_id)
        self.deleted.append(session_id)

    def list_session_ids(self) -> list[str]:
        return sorted(self.session_ids)


@dataclass
class RecordingWebhookClient(WebhookClient):
    """Webhook client that records posts."""

    posts: list[tuple[str, dict[str, object], dict[str, str]]] = field(
        default_factory=list
    )
    fail: bool = False

    async def post(
        self, url: str, body: dict[str, object], headers: dict[str, str]
    ) -> None:
        if self.fail:
            raise RuntimeError("connection refused")
        self.posts.append((url, body, headers))

    def data_types(self) -> list[str]:
        return [str(body["dataType"]) for _, body, _ in self.posts]


@dataclass(eq=False)
class FakeWebSocket:
    """Minimal stand-in for a Starlette WebSocket."""

    sent: list[dict[str, object]] = field(default_factory=list)
    accepted: bool = False
    closed_code: int | None = None
    fail_send: bool = False
    block_send: bool = False
    client_state: WebSocketState = WebSocketState.CONNECTING
    application_state: WebSocketState = WebSocketState.CONNECTING
    _inbox: asyncio.Queue[dict[str, object]] = field(default_factory=asyncio.Queue)

    async def accept(self) -> None:
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_code = code
        self.application_state = WebSocketState.DISCONNECTED
        self._inbox.put_nowait({"type": "websocket.disconnect", "code": code})

    async def send_json(self, data: dict[str, object]) -> None:
        if self.fail_send:
            raise RuntimeError("broken pipe")
        if self.block_send:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def receive(self) -> dict[str, object]:
        return await self._inbox.get()

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self._inbox.put_nowait({"type": "websocket.disconnect", "code": 1000})


@dataclass
class FakeClock:
    """Manually advanced clock."""

    current: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


async def settle(rounds: int = 10) -> None:
    """Let background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def build_registry(  # noqa: PLR0913
    factory: FakeClientFactory | None = None,
    credential_store: InMemoryCredentialStore | None = None,
    webhook_client: RecordingWebhookClient | None = None,
    hub: WebSocketHub | None = None,
    disabled: frozenset[str] = frozenset(),
    webhook_url: str | None = "https://hooks.test/webhook",
    **options: object,
) -> SessionRegistry:
    """Build a registry wired to in-memory doubles."""
    return SessionRegistry(
        client_factory=factory or FakeClientFactory(),
        credential_store=credential_store or InMemoryCredentialStore(),
        callback_filter=CallbackFilter(disabled),
        webhook_dispatcher=WebhookDispatcher(
            client=webhook_client or RecordingWebhookClient(), api_key="test-key"
        ),
        hub=hub or WebSocketHub(close_timeout=1.0),
        resolve_webhook_url=lambda session_id, override: override or webhook_url,
        **options,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_key="test-key",
        base_webhook_url="https://hooks.test/webhook",
        enable_websocket=True,
        restore_sessions=False,
        sessions_path=str(tmp_path / "sessions"),
        readiness_timeout_seconds=1.0,
    )


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def webhook_client() -> RecordingWebhookClient:
    return RecordingWebhookClient()


@pytest.fixture
def container(
    settings: Settings,
    client_factory: FakeClientFactory,
    credential_store: InMemoryCredentialStore,
    webhook_client: RecordingWebhookClient,
) -> AppContainer:
    callback_filter = CallbackFilter()
    webhook_dispatcher = WebhookDispatcher(
        client=webhook_client, api_key=settings.api_key
    )
    websocket_hub = WebSocketHub(close_timeout=1.0)
    session_registry = SessionRegistry(
        client_factory=client_factory,
        credential_store=credential_store,
        callback_filter=callback_filter,
        webhook_dispatcher=webhook_dispatcher,
        hub=websocket_hub,
        resolve_webhook_url=partial(resolve_webhook_url, settings, environ={}),
    )
    startup_restorer = StartupRestorer(
        registry=session_registry,
        credential_store=credential_store,
        readiness_timeout=settings.readiness_timeout_seconds,
    )
    inactivity_sweeper = InactivitySweeper(
        registry=session_registry, interval_seconds=0
    )

    async def close_resources() -> None:
        await session_registry.close()
        await webhook_dispatcher.drain(timeout=1.0)

    return AppContainer(
        settings=settings,
        credential_store=credential_store,
        callback_filter=callback_filter,
        webhook_dispatcher=webhook_dispatcher,
        websocket_hub=websocket_hub,
        session_registry=session_registry,
        startup_restorer=startup_restorer,
        inactivity_sweeper=inactivity_sweeper,
        close_resources=close_resources,
    )


async def subscribe(
    hub: WebSocketHub, session_id: str
) -> tuple[FakeWebSocket, "asyncio.Task[None]"]:
    """Connect a fake subscriber and wait until it is serving."""
    websocket = FakeWebSocket()
    serving = hub.serve(session_id, websocket)  # type: ignore[arg-type]
    task = asyncio.create_task(serving)
    await settle()
    return websocket, task


@pytest.fixture(autouse=True)
def _reset_app_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("automation_gateway")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
