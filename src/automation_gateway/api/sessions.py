"""Session lifecycle endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from automation_gateway.api.auth import require_api_key
from automation_gateway.domain.sessions import (
    InvalidSessionIdError,
    SessionConflictError,
    SessionNotFoundError,
    SessionStatus,
)

if TYPE_CHECKING:
    from automation_gateway.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/session", tags=["session"], dependencies=[Depends(require_api_key)]
)

_NOT_FOUND = {"success": False, "message": "session_not_found"}


class PairingCodeRequest(BaseModel):
    """Body of a pairing code request."""

    phoneNumber: str  # noqa: N815
    showNotification: bool = True  # noqa: N815


def error_response(status_code: int, message: str) -> JSONResponse:
    """Return the common error body."""
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


def _container(request: Request) -> AppContainer:
    return request.app.state.container


@router.get("/start/{session_id}", response_model=None)
async def start_session(
    session_id: str, request: Request, webhookUrl: str | None = None  # noqa: N803
) -> JSONResponse | dict[str, object]:
    """Start a session and wait until its client context exists."""
    container = _container(request)
    registry = container.session_registry
    try:
        handle = await registry.create(session_id, webhook_url=webhookUrl)
    except (SessionConflictError, InvalidSessionIdError) as exc:
        return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))
    except Exception as exc:
        logger.exception("Failed to start session", extra={"session_id": session_id})
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    try:
        await handle.wait_until_ready(container.settings.readiness_timeout_seconds)
    except Exception as exc:
        logger.exception(
            "Session did not become ready", extra={"session_id": session_id}
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"success": True, "message": "Session initiated successfully"}


@router.get("/status/{session_id}", response_model=None)
async def status_session(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """Return the session snapshot and the client's live state."""
    registry = _container(request).session_registry
    try:
        snapshot = registry.status(session_id)
    except SessionNotFoundError:
        return _NOT_FOUND
    state: str | None = None
    if snapshot.status == SessionStatus.CONNECTED:
        try:
            state = await registry.client_state(session_id)
        except SessionNotFoundError:
            return _NOT_FOUND
        except Exception:
            logger.exception(
                "Failed to get client state", extra={"session_id": session_id}
            )
    connected = snapshot.status == SessionStatus.CONNECTED
    return {
        "success": connected,
        "state": state,
        "message": "session_connected" if connected else "session_not_connected",
        "session": snapshot.to_dict(),
    }


@router.get("/qr/{session_id}", response_model=None)
async def session_qr(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """Return the pending QR payload of a session."""
    registry = _container(request).session_registry
    try:
        snapshot = registry.status(session_id)
    except SessionNotFoundError:
        return _NOT_FOUND
    if snapshot.qr:
        return {"success": True, "qr": snapshot.qr}
    return {"success": False, "message": "qr code not ready or already scanned"}


@router.post("/requestPairingCode/{session_id}", response_model=None)
async def request_pairing_code(
    session_id: str, body: PairingCodeRequest, request: Request
) -> JSONResponse | dict[str, object]:
    """Request authentication through a pairing code instead of a QR scan."""
    registry = _container(request).session_registry
    try:
        client = registry.get_client(session_id)
        result = await client.request_pairing_code(
            body.phoneNumber, body.showNotification
        )
    except SessionNotFoundError:
        return _NOT_FOUND
    except Exception as exc:
        logger.exception(
            "Failed to request pairing code", extra={"session_id": session_id}
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"success": True, "result": result}


@router.get("/restart/{session_id}", response_model=None)
async def restart_session(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """Restart the client of a session."""
    registry = _container(request).session_registry
    try:
        await registry.restart(session_id)
    except SessionNotFoundError:
        return _NOT_FOUND
    except Exception as exc:
        logger.exception(
            "Failed to restart session", extra={"session_id": session_id}
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"success": True, "message": "Restarted successfully"}


@router.get("/terminate/{session_id}", response_model=None)
async def terminate_session(
    session_id: str, request: Request
) -> JSONResponse | dict[str, object]:
    """Log out and remove a session."""
    registry = _container(request).session_registry
    try:
        await registry.terminate(session_id)
    except SessionNotFoundError:
        return _NOT_FOUND
    except Exception as exc:
        logger.exception(
            "Failed to terminate session", extra={"session_id": session_id}
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"success": True, "message": "Logged out successfully"}


@router.get("/terminateInactive", response_model=None)
async def terminate_inactive_sessions(request: Request) -> dict[str, object]:
    """Terminate every session that is not connected."""
    report = await _container(request).session_registry.sweep(inactive_only=True)
    return {
        "success": not report.failures,
        "message": "Flush completed successfully",
        "terminated": report.terminated,
        "failures": report.failures,
    }


@router.get("/terminateAll", response_model=None)
async def terminate_all_sessions(request: Request) -> dict[str, object]:
    """Terminate every session."""
    report = await _container(request).session_registry.sweep(inactive_only=False)
    return {
        "success": not report.failures,
        "message": "Flush completed successfully",
        "terminated": report.terminated,
        "failures": report.failures,
    }


@router.get("/getSessions", response_model=None)
async def get_sessions(request: Request) -> dict[str, object]:
    """List every registered session."""
    registry = _container(request).session_registry
    return {
        "success": True,
        "result": [snapshot.to_dict() for snapshot in registry.list_sessions()],
    }
