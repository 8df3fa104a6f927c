"""API key guard shared by the routers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from automation_gateway.containers import AppContainer


def _get_api_key(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.api_key


async def require_api_key(
    x_api_key: str | None = Header(default=None),
    api_key: str | None = Depends(_get_api_key),
) -> None:
    """Ensure requests carry the configured API key, when one is set."""
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
