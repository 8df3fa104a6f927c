"""HTTP client used for webhook delivery."""

from dataclasses import dataclass
from typing import Protocol

import httpx


class WebhookClient(Protocol):
    """Interface for posting webhook bodies."""

    async def post(
        self, url: str, body: dict[str, object], headers: dict[str, str]
    ) -> None:
        """POST a JSON body to a URL."""


@dataclass
class HttpxWebhookClient(WebhookClient):
    """Webhook client implemented with httpx."""

    http_client: httpx.AsyncClient
    timeout: float = 10.0

    @classmethod
    def create(cls, timeout: float = 10.0) -> "HttpxWebhookClient":
        """Create a webhook client with a managed httpx session."""
        return cls(http_client=httpx.AsyncClient(), timeout=timeout)

    async def post(
        self, url: str, body: dict[str, object], headers: dict[str, str]
    ) -> None:
        """POST the body and raise on a non-2xx response."""
        response = await self.http_client.post(
            url, json=body, headers=headers, timeout=self.timeout
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
