"""Command line entrypoint running the API under uvicorn."""

import uvicorn

from automation_gateway.api.app import create_app
from automation_gateway.containers import build_container


def main() -> None:
    """Run the server with WebSocket keepalive taken from settings."""
    container = build_container()
    settings = container.settings
    uvicorn.run(
        create_app(container),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        ws_ping_interval=settings.ws_ping_interval,
        ws_ping_timeout=settings.ws_ping_timeout,
    )


if __name__ == "__main__":
    main()
