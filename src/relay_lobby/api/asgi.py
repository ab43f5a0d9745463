"""ASGI entrypoint for the lobby control API."""

from relay_lobby.api.app import create_app
from relay_lobby.containers import build_container

app = create_app(build_container())
