"""Tests for the lobby heartbeat loop."""

import asyncio

import pytest

from relay_lobby.adapters.memory_services import LocalLobbyClient
from relay_lobby.services.heartbeat import HeartbeatTask
from tests.conftest import FlakyLobbyClient, LocalWorld


def test_heartbeat_rejects_non_positive_interval(world: LocalWorld) -> None:
    client = LocalLobbyClient(world.directory, lambda: "host")

    with pytest.raises(ValueError):
        HeartbeatTask(lobby_client=client, interval_seconds=0)


def test_heartbeat_sends_immediately_and_stops(world: LocalWorld) -> None:
    client = LocalLobbyClient(world.directory, lambda: "host")
    lobby = world.directory.create("host", "Arena", 4, False, {})
    heartbeat = HeartbeatTask(lobby_client=client, interval_seconds=15)

    async def scenario() -> None:
        heartbeat.start(lobby.id)
        await asyncio.sleep(0)
        assert heartbeat.sent == 1
        assert heartbeat.lobby_id == lobby.id
        with pytest.raises(RuntimeError):
            heartbeat.start(lobby.id)
        await heartbeat.stop()
        assert not heartbeat.running
        assert heartbeat.lobby_id is None
        await heartbeat.stop()

    asyncio.run(scenario())


def test_heartbeat_keeps_lobby_alive_past_expiry(world: LocalWorld) -> None:
    world.directory.expiry_seconds = 0.3
    client = LocalLobbyClient(world.directory, lambda: "host")
    lobby = world.directory.create("host", "Arena", 4, False, {})
    heartbeat = HeartbeatTask(lobby_client=client, interval_seconds=0.02)

    async def scenario() -> None:
        heartbeat.start(lobby.id)
        await asyncio.sleep(0.6)
        assert world.directory.get(lobby.id) is not None
        await heartbeat.stop()
        await asyncio.sleep(0.4)
        assert world.directory.get(lobby.id) is None

    asyncio.run(scenario())


def test_heartbeat_survives_failures(world: LocalWorld) -> None:
    inner = LocalLobbyClient(world.directory, lambda: "host")
    client = FlakyLobbyClient(inner, heartbeat_failures=3)
    lobby = world.directory.create("host", "Arena", 4, False, {})
    heartbeat = HeartbeatTask(lobby_client=client, interval_seconds=0.01)

    async def scenario() -> None:
        heartbeat.start(lobby.id)
        await asyncio.sleep(0.15)
        assert heartbeat.running
        await heartbeat.stop()

    asyncio.run(scenario())

    assert client.heartbeats > 3
    assert heartbeat.sent == client.heartbeats - 3
