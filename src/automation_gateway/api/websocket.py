"""WebSocket subscription endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket

if TYPE_CHECKING:
    from automation_gateway.containers import AppContainer

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/{session_id}")
async def session_events(websocket: WebSocket, session_id: str) -> None:
    """Stream a session's events; unknown sessions are refused."""
    container: AppContainer = websocket.app.state.container
    await container.websocket_hub.serve(session_id, websocket)
