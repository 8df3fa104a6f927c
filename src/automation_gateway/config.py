"""Application configuration."""

import os
from collections.abc import Mapping

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_key: str | None = None
    base_webhook_url: str | None = None
    enable_webhook: bool = True
    enable_websocket: bool = False
    disabled_callbacks: str | None = None
    sessions_path: str = "./sessions"
    max_attachment_size: int = 10_000_000
    set_messages_as_seen: bool = False
    recover_sessions: bool = False
    restore_sessions: bool = True
    readiness_timeout_seconds: float = 10.0
    sweep_interval_seconds: float = 0.0
    inactive_grace_seconds: float = 300.0
    webhook_timeout_seconds: float = 10.0
    ws_ping_interval: float = 20.0
    ws_ping_timeout: float = 20.0
    ws_close_timeout: float = 5.0
    ws_send_queue_size: int = 100
    bridge_url: str = "http://127.0.0.1:3100"
    bridge_ws_url: str | None = None
    enable_local_callback_example: bool = False
    log_level: str = "info"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_webhook_url(self) -> "Settings":
        if self.enable_webhook and not self.base_webhook_url:
            raise ValueError(
                "BASE_WEBHOOK_URL must be set when ENABLE_WEBHOOK is true"
            )
        return self


def parse_disabled_callbacks(raw: str | None) -> frozenset[str]:
    """Parse the list of suppressed event types from env.

    Both ``|`` and ``,`` are accepted as separators.
    """
    if raw is None:
        return frozenset()
    names: set[str] = set()
    for chunk in raw.replace(",", "|").split("|"):
        value = chunk.strip()
        if value:
            names.add(value)
    return frozenset(names)


def resolve_webhook_url(
    settings: Settings,
    session_id: str,
    override: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Resolve the webhook destination for a session.

    An explicit override wins, then ``<session_id>_WEBHOOK_URL`` from the
    environment, then the process-wide base URL.
    """
    if not settings.enable_webhook:
        return None
    if override:
        return override
    env = os.environ if environ is None else environ
    return env.get(f"{session_id}_WEBHOOK_URL") or settings.base_webhook_url
