"""Shared test fixtures."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from relay_lobby.adapters.auth_client import AuthClient, LocalAuthClient
from relay_lobby.adapters.lobby_client import LobbyClient
from relay_lobby.adapters.memory_services import (
    InMemoryLobbyDirectory,
    InMemoryRelayService,
    LocalLobbyClient,
    LoopbackRelayNetwork,
    LoopbackTransport,
)
from relay_lobby.adapters.relay_client import RelayClient
from relay_lobby.config import Settings
from relay_lobby.containers import AppContainer, build_orchestrator
from relay_lobby.domain.errors import (
    AuthenticationError,
    DirectoryErrorReason,
    DirectoryServiceError,
)
from relay_lobby.domain.identity import PlayerIdentity
from relay_lobby.domain.lobbies import DataObject, Lobby, QueryFilter, QueryOrder
from relay_lobby.domain.relay import HostAllocation, JoinAllocation
from relay_lobby.services.identity import IdentityService
from relay_lobby.services.notifications import NotificationBus
from relay_lobby.services.orchestrator import SessionOrchestrator
from relay_lobby.services.presentation import StatusBoard


@dataclass
class FixedAuthClient(AuthClient):
    """Auth client returning a predictable identity."""

    player_id: str = "player-1"
    calls: int = 0

    async def sign_in_anonymously(self) -> PlayerIdentity:
        self.calls += 1
        return PlayerIdentity(
            player_id=self.player_id, access_token=f"token-{self.player_id}"
        )


@dataclass
class FailingAuthClient(AuthClient):
    """Auth client whose sign-in always fails."""

    async def sign_in_anonymously(self) -> PlayerIdentity:
        raise AuthenticationError("auth service down")


@dataclass
class ManualClock:
    """Monotonic clock advanced by hand."""

    value: float = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@dataclass
class StepTimestamps:
    """Creation timestamps that grow by one minute per call."""

    start: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    )
    calls: int = 0

    def __call__(self) -> datetime:
        value = self.start + timedelta(minutes=self.calls)
        self.calls += 1
        return value


@dataclass
class RecordingListener:
    """Collects notifications published on the bus."""

    states: list[str] = field(default_factory=list)
    matches: int = 0

    def on_state(self, message: str) -> None:
        self.states.append(message)

    def on_match(self) -> None:
        self.matches += 1

    def attach(self, bus: NotificationBus) -> "RecordingListener":
        bus.subscribe_state_changed(self.on_state)
        bus.subscribe_match_found(self.on_match)
        return self


@dataclass
class FlakyLobbyClient(LobbyClient):
    """Wraps a lobby client and fails selected operations."""

    inner: LobbyClient
    heartbeat_failures: int = 0
    fail_create: bool = False
    fail_delete: bool = False
    fail_query: bool = False
    heartbeats: int = 0
    deleted: list[str] = field(default_factory=list)
    removed: list[tuple[str, str]] = field(default_factory=list)

    async def create_lobby(
        self,
        name: str,
        max_players: int,
        is_private: bool,
        data: dict[str, DataObject],
    ) -> Lobby:
        if self.fail_create:
            raise DirectoryServiceError(
                DirectoryErrorReason.INVALID_REQUEST, "quota reached"
            )
        return await self.inner.create_lobby(name, max_players, is_private, data)

    async def quick_join(self, filters: list[QueryFilter] | None = None) -> Lobby:
        return await self.inner.quick_join(filters)

    async def query_lobbies(
        self, filters: list[QueryFilter], order: list[QueryOrder], count: int
    ) -> list[Lobby]:
        if self.fail_query:
            raise DirectoryServiceError(DirectoryErrorReason.UNAVAILABLE, "down")
        return await self.inner.query_lobbies(filters, order, count)

    async def join_lobby_by_id(self, lobby_id: str) -> Lobby:
        return await self.inner.join_lobby_by_id(lobby_id)

    async def send_heartbeat(self, lobby_id: str) -> None:
        self.heartbeats += 1
        if self.heartbeat_failures > 0:
            self.heartbeat_failures -= 1
            raise DirectoryServiceError(DirectoryErrorReason.UNAVAILABLE, "blip")
        await self.inner.send_heartbeat(lobby_id)

    async def remove_player(self, lobby_id: str, player_id: str) -> None:
        self.removed.append((lobby_id, player_id))
        await self.inner.remove_player(lobby_id, player_id)

    async def delete_lobby(self, lobby_id: str) -> None:
        self.deleted.append(lobby_id)
        if self.fail_delete:
            raise DirectoryServiceError(DirectoryErrorReason.UNAVAILABLE, "down")
        await self.inner.delete_lobby(lobby_id)


@dataclass
class HangingRelayClient(RelayClient):
    """Relay client whose calls never complete."""

    async def create_allocation(self, max_connections: int) -> HostAllocation:
        await _forever()
        raise AssertionError("unreachable")

    async def get_join_code(self, allocation_id: str) -> str:
        await _forever()
        raise AssertionError("unreachable")

    async def join_allocation(self, join_code: str) -> JoinAllocation:
        await _forever()
        raise AssertionError("unreachable")


async def _forever() -> None:
    await asyncio.Event().wait()


@dataclass
class BrokenRelayClient(RelayClient):
    """Relay client failing with an error outside the lobby error taxonomy."""

    async def create_allocation(self, max_connections: int) -> HostAllocation:
        raise RuntimeError("relay client bug")

    async def get_join_code(self, allocation_id: str) -> str:
        raise RuntimeError("relay client bug")

    async def join_allocation(self, join_code: str) -> JoinAllocation:
        raise RuntimeError("relay client bug")


@dataclass
class StalledLoopbackTransport(LoopbackTransport):
    """Loopback transport whose start never completes."""

    async def start_host(self) -> None:
        await _forever()

    async def start_client(self) -> None:
        await _forever()


@dataclass
class Player:
    """One orchestrator with its own identity, transport and listeners."""

    orchestrator: SessionOrchestrator
    transport: LoopbackTransport
    identity: IdentityService
    lobby_client: LobbyClient
    listener: RecordingListener


@dataclass
class LocalWorld:
    """Shared directory, relay and loopback network for several players."""

    directory: InMemoryLobbyDirectory = field(
        default_factory=lambda: InMemoryLobbyDirectory(now=StepTimestamps())
    )
    relay: InMemoryRelayService = field(default_factory=InMemoryRelayService)
    network: LoopbackRelayNetwork = field(default_factory=LoopbackRelayNetwork)

    def __post_init__(self) -> None:
        self.network.relay = self.relay

    def player(  # noqa: PLR0913
        self,
        player_id: str,
        *,
        settings: Settings | None = None,
        wrap_lobby_client: Callable[[LobbyClient], LobbyClient] | None = None,
        relay_client: RelayClient | None = None,
        auth_client: AuthClient | None = None,
        transport: LoopbackTransport | None = None,
    ) -> Player:
        resolved_settings = settings or Settings(heartbeat_interval_seconds=15)
        identity = IdentityService(auth_client or FixedAuthClient(player_id))
        client: LobbyClient = LocalLobbyClient(
            directory=self.directory, player_id_provider=identity.player_id
        )
        if wrap_lobby_client is not None:
            client = wrap_lobby_client(client)
        transport = transport or LoopbackTransport(self.network)
        notifications = NotificationBus()
        orchestrator = build_orchestrator(
            resolved_settings,
            identity_service=identity,
            lobby_client=client,
            relay_client=relay_client or self.relay,
            transport=transport,
            notifications=notifications,
        )
        return Player(
            orchestrator=orchestrator,
            transport=transport,
            identity=identity,
            lobby_client=client,
            listener=RecordingListener().attach(notifications),
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        lobby_service_url=None,
        relay_service_url=None,
        auth_service_url=None,
        environment="test",
    )


@pytest.fixture
def world() -> LocalWorld:
    return LocalWorld()


@pytest.fixture
def container(settings: Settings, world: LocalWorld) -> AppContainer:
    identity_service = IdentityService(LocalAuthClient())
    lobby_client = LocalLobbyClient(
        directory=world.directory, player_id_provider=identity_service.player_id
    )
    transport = LoopbackTransport(world.network)
    notifications = NotificationBus()
    orchestrator = build_orchestrator(
        settings,
        identity_service=identity_service,
        lobby_client=lobby_client,
        relay_client=world.relay,
        transport=transport,
        notifications=notifications,
    )
    status_board = StatusBoard(notifications)

    async def close_resources() -> None:
        status_board.close()

    return AppContainer(
        settings=settings,
        identity_service=identity_service,
        lobby_client=lobby_client,
        relay_client=world.relay,
        transport=transport,
        notifications=notifications,
        orchestrator=orchestrator,
        status_board=status_board,
        close_resources=close_resources,
    )
