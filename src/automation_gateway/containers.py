"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path

import httpx

from automation_gateway.adapters.automation_client import ClientFactory
from automation_gateway.adapters.bridge_client import HttpxBridgeClient
from automation_gateway.adapters.credential_store import (
    CredentialStore,
    FileSystemCredentialStore,
)
from automation_gateway.adapters.webhook_client import HttpxWebhookClient
from automation_gateway.config import (
    Settings,
    parse_disabled_callbacks,
    resolve_webhook_url,
)
from automation_gateway.services.callbacks import CallbackFilter
from automation_gateway.services.restore import StartupRestorer
from automation_gateway.services.sessions import SessionRegistry
from automation_gateway.services.sweeper import InactivitySweeper
from automation_gateway.services.webhooks import WebhookDispatcher
from automation_gateway.services.websocket_hub import WebSocketHub


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    credential_store: CredentialStore
    callback_filter: CallbackFilter
    webhook_dispatcher: WebhookDispatcher
    websocket_hub: WebSocketHub
    session_registry: SessionRegistry
    startup_restorer: StartupRestorer
    inactivity_sweeper: InactivitySweeper
    close_resources: Callable[[], Awaitable[None]]


def build_container(
    settings: Settings | None = None,
    client_factory: ClientFactory | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    credential_store = FileSystemCredentialStore(Path(resolved_settings.sessions_path))
    callback_filter = CallbackFilter(
        parse_disabled_callbacks(resolved_settings.disabled_callbacks)
    )
    webhook_client = HttpxWebhookClient.create(
        timeout=resolved_settings.webhook_timeout_seconds
    )
    webhook_dispatcher = WebhookDispatcher(
        client=webhook_client, api_key=resolved_settings.api_key
    )
    websocket_hub = WebSocketHub(
        send_queue_size=resolved_settings.ws_send_queue_size,
        close_timeout=resolved_settings.ws_close_timeout,
    )
    bridge_http_client = httpx.AsyncClient()
    resolved_factory = client_factory or HttpxBridgeClient.factory(
        base_url=resolved_settings.bridge_url,
        ws_url=resolved_settings.bridge_ws_url,
        http_client=bridge_http_client,
    )
    session_registry = SessionRegistry(
        client_factory=resolved_factory,
        credential_store=credential_store,
        callback_filter=callback_filter,
        webhook_dispatcher=webhook_dispatcher,
        hub=websocket_hub,
        resolve_webhook_url=partial(resolve_webhook_url, resolved_settings),
        set_messages_as_seen=resolved_settings.set_messages_as_seen,
        max_attachment_size=resolved_settings.max_attachment_size,
        recover_sessions=resolved_settings.recover_sessions,
    )
    startup_restorer = StartupRestorer(
        registry=session_registry,
        credential_store=credential_store,
        readiness_timeout=resolved_settings.readiness_timeout_seconds,
    )
    inactivity_sweeper = InactivitySweeper(
        registry=session_registry,
        interval_seconds=resolved_settings.sweep_interval_seconds,
        grace_seconds=resolved_settings.inactive_grace_seconds,
    )

    async def close_resources() -> None:
        await inactivity_sweeper.stop()
        await session_registry.close()
        await webhook_dispatcher.drain(
            timeout=resolved_settings.webhook_timeout_seconds
        )
        await webhook_client.close()
        await bridge_http_client.aclose()

    return AppContainer(
        settings=resolved_settings,
        credential_store=credential_store,
        callback_filter=callback_filter,
        webhook_dispatcher=webhook_dispatcher,
        websocket_hub=websocket_hub,
        session_registry=session_registry,
        startup_restorer=startup_restorer,
        inactivity_sweeper=inactivity_sweeper,
        close_resources=close_resources,
    )
