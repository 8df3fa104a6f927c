"""Thin pass-through endpoints onto a session's automation client."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from automation_gateway.api.auth import require_api_key
from automation_gateway.api.sessions import error_response
from automation_gateway.domain.sessions import SessionNotFoundError

if TYPE_CHECKING:
    from automation_gateway.adapters.automation_client import AutomationClient
    from automation_gateway.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/client", tags=["client"], dependencies=[Depends(require_api_key)]
)


class SendMessageRequest(BaseModel):
    """Body of a send message request."""

    chatId: str  # noqa: N815
    content: Any
    contentType: str = "string"  # noqa: N815
    options: dict[str, Any] = {}


class ChatIdRequest(BaseModel):
    """Body addressing a single chat."""

    chatId: str  # noqa: N815


class ContactIdRequest(BaseModel):
    """Body addressing a single contact."""

    contactId: str  # noqa: N815


async def _call(
    request: Request,
    session_id: str,
    action: str,
    operation: Callable[[AutomationClient], Awaitable[object]],
) -> JSONResponse | dict[str, object]:
    container: AppContainer = request.app.state.container
    try:
        client = container.session_registry.get_client(session_id)
        result = await operation(client)
    except SessionNotFoundError:
        return {"success": False, "message": "session_not_found"}
    except Exception as exc:
        logger.exception(
            "Failed to %s", action, extra={"session_id": session_id}
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"success": True, "result": result}


@router.post("/sendMessage/{session_id}", response_model=None)
async def send_message(
    session_id: str, body: SendMessageRequest, request: Request
) -> JSONResponse | dict[str, object]:
    """Send a message to a chat."""
    options = {"contentType": body.contentType, **body.options}
    return await _call(
        request,
        session_id,
        "send message",
        lambda client: client.send_message(body.chatId, body.content, options),
    )


@router.get("/getChats/{session_id}", response_model=None)
async def get_chats(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """List the chats of a session."""
    return await _call(
        request, session_id, "get chats", lambda client: client.get_chats()
    )


@router.post("/getChatById/{session_id}", response_model=None)
async def get_chat_by_id(
    session_id: str, body: ChatIdRequest, request: Request
) -> JSONResponse | dict[str, object]:
    """Return one chat."""
    return await _call(
        request,
        session_id,
        "get chat",
        lambda client: client.get_chat_by_id(body.chatId),
    )


@router.get("/getContacts/{session_id}", response_model=None)
async def get_contacts(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """List the contacts of a session."""
    return await _call(
        request, session_id, "get contacts", lambda client: client.get_contacts()
    )


@router.post("/getContactById/{session_id}", response_model=None)
async def get_contact_by_id(
    session_id: str, body: ContactIdRequest, request: Request
) -> JSONResponse | dict[str, object]:
    """Return one contact."""
    return await _call(
        request,
        session_id,
        "get contact",
        lambda client: client.get_contact_by_id(body.contactId),
    )


@router.get("/getState/{session_id}", response_model=None)
async def get_state(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """Return the live connection state reported by the client."""
    return await _call(
        request, session_id, "get state", lambda client: client.get_state()
    )


@router.post("/sendSeen/{session_id}", response_model=None)
async def send_seen(
    session_id: str, body: ChatIdRequest, request: Request
) -> JSONResponse | dict[str, object]:
    """Mark a chat as read."""
    return await _call(
        request,
        session_id,
        "send seen",
        lambda client: client.send_seen(body.chatId),
    )
