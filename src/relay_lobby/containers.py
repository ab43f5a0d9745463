"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from relay_lobby.adapters.auth_client import AuthClient, HttpxAuthClient, LocalAuthClient
from relay_lobby.adapters.lobby_client import HttpxLobbyClient, LobbyClient
from relay_lobby.adapters.memory_services import (
    InMemoryLobbyDirectory,
    InMemoryRelayService,
    LocalLobbyClient,
    LoopbackRelayNetwork,
    LoopbackTransport,
)
from relay_lobby.adapters.relay_client import HttpxRelayClient, RelayClient
from relay_lobby.adapters.relay_transport import DatagramRelayTransport
from relay_lobby.config import Settings, normalize_base_url
from relay_lobby.services.heartbeat import HeartbeatTask
from relay_lobby.services.identity import IdentityService
from relay_lobby.services.notifications import NotificationBus
from relay_lobby.services.orchestrator import SessionOrchestrator
from relay_lobby.services.presentation import StatusBoard
from relay_lobby.services.transport import Transport, TransportBinder


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    identity_service: IdentityService
    lobby_client: LobbyClient
    relay_client: RelayClient
    transport: Transport
    notifications: NotificationBus
    orchestrator: SessionOrchestrator
    status_board: StatusBoard
    close_resources: Callable[[], Awaitable[None]]


def build_orchestrator(  # noqa: PLR0913
    settings: Settings,
    *,
    identity_service: IdentityService,
    lobby_client: LobbyClient,
    relay_client: RelayClient,
    transport: Transport,
    notifications: NotificationBus,
) -> SessionOrchestrator:
    """Wire an orchestrator from its collaborators and settings."""
    return SessionOrchestrator(
        lobby_client=lobby_client,
        relay_client=relay_client,
        transport=TransportBinder(transport),
        notifications=notifications,
        heartbeat=HeartbeatTask(
            lobby_client=lobby_client,
            interval_seconds=settings.heartbeat_interval_seconds,
        ),
        identity=identity_service,
        max_connections=settings.max_connections,
        request_timeout_seconds=settings.request_timeout_seconds,
        lobby_query_limit=settings.lobby_query_limit,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    closers: list[Callable[[], Awaitable[None]]] = []

    auth_client: AuthClient
    if resolved_settings.auth_service_url:
        http_auth_client = HttpxAuthClient.create(
            normalize_base_url(resolved_settings.auth_service_url),
            resolved_settings.project_id,
        )
        closers.append(http_auth_client.close)
        auth_client = http_auth_client
    else:
        auth_client = LocalAuthClient()
    identity_service = IdentityService(auth_client)

    lobby_client: LobbyClient
    relay_client: RelayClient
    transport: Transport
    if resolved_settings.uses_local_services:
        lobby_client = LocalLobbyClient(
            directory=InMemoryLobbyDirectory(
                expiry_seconds=resolved_settings.lobby_expiry_seconds
            ),
            player_id_provider=identity_service.player_id,
        )
        local_relay = InMemoryRelayService()
        relay_client = local_relay
        transport = LoopbackTransport(LoopbackRelayNetwork(relay=local_relay))
    else:
        http_lobby_client = HttpxLobbyClient.create(
            normalize_base_url(resolved_settings.lobby_service_url),
            identity_service.access_token,
        )
        http_relay_client = HttpxRelayClient.create(
            normalize_base_url(resolved_settings.relay_service_url),
            identity_service.access_token,
        )
        closers.extend([http_lobby_client.close, http_relay_client.close])
        lobby_client = http_lobby_client
        relay_client = http_relay_client
        transport = DatagramRelayTransport()

    notifications = NotificationBus()
    orchestrator = build_orchestrator(
        resolved_settings,
        identity_service=identity_service,
        lobby_client=lobby_client,
        relay_client=relay_client,
        transport=transport,
        notifications=notifications,
    )
    status_board = StatusBoard(notifications)

    async def close_resources() -> None:
        status_board.close()
        for close in closers:
            await close()

    return AppContainer(
        settings=resolved_settings,
        identity_service=identity_service,
        lobby_client=lobby_client,
        relay_client=relay_client,
        transport=transport,
        notifications=notifications,
        orchestrator=orchestrator,
        status_board=status_board,
        close_resources=close_resources,
    )
