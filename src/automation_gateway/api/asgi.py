"""ASGI entrypoint for the automation gateway API."""

from automation_gateway.api.app import create_app
from automation_gateway.containers import build_container

app = create_app(build_container())
