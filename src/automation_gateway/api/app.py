"""FastAPI application factory."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from automation_gateway.api.auth import require_api_key
from automation_gateway.api.client import router as client_router
from automation_gateway.api.sessions import error_response
from automation_gateway.api.sessions import router as session_router
from automation_gateway.api.websocket import router as websocket_router
from automation_gateway.app_logging import configure_logging
from automation_gateway.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        if state_container.settings.restore_sessions:
            await state_container.startup_restorer.restore()
        state_container.inactivity_sweeper.start()
        yield
        try:
            await state_container.close_resources()
        except Exception:
            logger.exception("Failed to close resources")

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(session_router)
    app.include_router(client_router)
    if settings.enable_websocket:
        app.include_router(websocket_router)

    @app.get("/ping")
    async def ping() -> dict[str, object]:
        """Health check answering with pong."""
        return {"success": True, "message": "pong"}

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    if settings.enable_local_callback_example:

        @app.post(
            "/localCallbackExample",
            response_model=None,
            dependencies=[Depends(require_api_key)],
        )
        async def local_callback_example(
            request: Request,
        ) -> JSONResponse | dict[str, object]:
            """Append webhook bodies to a log file. For development only."""
            try:
                body = await request.json()
                log_dir = Path(settings.sessions_path)
                log_dir.mkdir(parents=True, exist_ok=True)
                with (log_dir / "message_log.txt").open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(body) + "\r\n")
            except Exception as exc:
                logger.exception("Failed to handle local callback")
                return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
            return {"success": True}

    return app
