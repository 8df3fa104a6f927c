"""Best-effort webhook delivery."""

import asyncio
import logging
from dataclasses import dataclass, field

from automation_gateway.adapters.webhook_client import WebhookClient
from automation_gateway.domain.events import EventEnvelope

logger = logging.getLogger(__name__)


@dataclass
class WebhookDispatcher:
    """Fire-and-forget delivery of envelopes to HTTP destinations.

    Delivery is at-most-once: each dispatch runs as its own background task,
    is never retried, and a failure is logged and dropped. A slow destination
    only holds up its own task.
    """

    client: WebhookClient
    api_key: str | None = None
    _pending: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )

    def dispatch(self, url: str, envelope: EventEnvelope) -> None:
        """Schedule delivery of an envelope and return immediately."""
        task = asyncio.get_running_loop().create_task(self._deliver(url, envelope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries to finish."""
        if not self._pending:
            return
        await asyncio.wait(set(self._pending), timeout=timeout)

    async def _deliver(self, url: str, envelope: EventEnvelope) -> None:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        try:
            await self.client.post(url, envelope.to_webhook_body(), headers)
        except Exception:
            logger.exception(
                "Failed to send webhook to %s",
                url,
                extra={
                    "session_id": envelope.session_id,
                    "data_type": envelope.data_type,
                },
            )
            return
        logger.debug(
            "Webhook sent to %s",
            url,
            extra={
                "session_id": envelope.session_id,
                "data_type": envelope.data_type,
            },
        )
