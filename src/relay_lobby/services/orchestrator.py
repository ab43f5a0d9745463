"""Session orchestration: lobby, relay and transport sequencing."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

from relay_lobby.adapters.lobby_client import LobbyClient
from relay_lobby.adapters.relay_client import RelayClient
from relay_lobby.domain.errors import (
    DirectoryErrorReason,
    DirectoryServiceError,
    LobbyError,
    LobbyStateError,
    LobbyValidationError,
)
from relay_lobby.domain.lobbies import (
    JOIN_CODE_KEY,
    LOBBY_LIST_ORDER,
    OPEN_SLOTS_FILTER,
    DataObject,
    Lobby,
    Visibility,
)
from relay_lobby.domain.state import OrchestratorState, StatusMessage
from relay_lobby.services.heartbeat import HeartbeatTask
from relay_lobby.services.identity import IdentityService
from relay_lobby.services.notifications import NotificationBus
from relay_lobby.services.transport import TransportBinder

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_FLOW_ERRORS = (LobbyError, TimeoutError)


@dataclass
class SessionOrchestrator:
    """State machine that creates, finds, joins and leaves lobbies.

    One create/join flow runs at a time. Each step of a flow feeds the next,
    so steps run strictly in sequence; each external call is bounded by
    `request_timeout_seconds`. A failed flow reports a status message and
    returns to IDLE.
    """

    lobby_client: LobbyClient
    relay_client: RelayClient
    transport: TransportBinder
    notifications: NotificationBus
    heartbeat: HeartbeatTask
    identity: IdentityService
    max_connections: int = 7
    request_timeout_seconds: float = 10
    lobby_query_limit: int = 20
    state: OrchestratorState = field(default=OrchestratorState.IDLE, init=False)
    lobby_id: str | None = field(default=None, init=False)
    join_code: str | None = field(default=None, init=False)
    _connected_peers: set[int] = field(default_factory=set, init=False)
    _created_lobby_id: str | None = field(default=None, init=False)
    _joined_lobby_id: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.transport.on_peer_connected(self._handle_peer_connected)

    @property
    def max_players(self) -> int:
        return self.max_connections + 1

    async def create_lobby(self, name: str) -> Lobby | None:
        """Allocate a relay, publish a lobby with its join code and host it."""
        lobby_name = name.strip()
        if not lobby_name:
            raise LobbyValidationError("Enter a lobby name")
        self._ensure_idle()

        _logger.info("Creating a new lobby %r", lobby_name)
        self._set_state(OrchestratorState.SEARCHING)
        self.notifications.publish_state(StatusMessage.CREATING_MATCH)
        lobby: Lobby | None = None
        async with self._roll_back_on_abort(StatusMessage.CREATE_FAILED):
            try:
                await self._call(self.identity.ensure_signed_in())
                allocation = await self._call(
                    self.relay_client.create_allocation(self.max_connections)
                )
                join_code = await self._call(
                    self.relay_client.get_join_code(allocation.allocation_id)
                )
                lobby = await self._call(
                    self.lobby_client.create_lobby(
                        lobby_name,
                        self.max_players,
                        False,
                        {JOIN_CODE_KEY: DataObject(join_code, Visibility.MEMBER)},
                    )
                )
                self._created_lobby_id = lobby.id
                _logger.info("Created lobby %s", lobby.id)
                await self._call(self.transport.bind_as_host(allocation))
            except _FLOW_ERRORS:
                _logger.exception("Lobby creation failed")
                await self._roll_back()
                self.notifications.publish_state(StatusMessage.CREATE_FAILED)
                return None

        self._created_lobby_id = None
        self.lobby_id = lobby.id
        self.join_code = join_code
        self.heartbeat.start(lobby.id)
        self._set_state(OrchestratorState.HOSTING_WAITING_FOR_PLAYERS)
        self.notifications.publish_state(StatusMessage.WAITING_FOR_PLAYERS)
        return lobby

    async def quick_join(self) -> Lobby | None:
        """Let the directory pick an open lobby and connect to it."""
        self._ensure_idle()
        _logger.info("Looking for a lobby...")
        self._set_state(OrchestratorState.SEARCHING)
        self.notifications.publish_state(StatusMessage.LOOKING_FOR_MATCH)
        async with self._roll_back_on_abort(StatusMessage.JOIN_FAILED):
            try:
                await self._call(self.identity.ensure_signed_in())
                lobby = await self._call(
                    self.lobby_client.quick_join([OPEN_SLOTS_FILTER])
                )
            except _FLOW_ERRORS as exc:
                _logger.info("Cannot find a lobby: %s", exc)
                self._reset()
                self.notifications.publish_state(StatusMessage.LOBBY_NOT_FOUND)
                return None
            return await self._connect_to_lobby(lobby)

    async def join_lobby(self, lobby_id: str) -> Lobby | None:
        """Join a lobby picked from the lobby list."""
        if not lobby_id.strip():
            raise LobbyValidationError("Lobby id must not be empty")
        self._ensure_idle()
        _logger.info("Joining lobby %s", lobby_id)
        self._set_state(OrchestratorState.SEARCHING)
        async with self._roll_back_on_abort(StatusMessage.JOIN_FAILED):
            try:
                await self._call(self.identity.ensure_signed_in())
                lobby = await self._call(self.lobby_client.join_lobby_by_id(lobby_id))
            except _FLOW_ERRORS:
                _logger.exception("Joining lobby %s failed", lobby_id)
                self._reset()
                self.notifications.publish_state(StatusMessage.JOIN_FAILED)
                return None
            return await self._connect_to_lobby(lobby)

    async def refresh_lobby_list(self) -> list[Lobby]:
        """Query open lobbies, fewest open slots first, then newest, then name."""
        try:
            await self._call(self.identity.ensure_signed_in())
            lobbies = await self._call(
                self.lobby_client.query_lobbies(
                    [OPEN_SLOTS_FILTER],
                    list(LOBBY_LIST_ORDER),
                    self.lobby_query_limit,
                )
            )
        except _FLOW_ERRORS:
            _logger.exception("Lobby query failed")
            self.notifications.publish_state(StatusMessage.REFRESH_FAILED)
            return []
        if lobbies:
            _logger.info("Found %s lobbies", len(lobbies))
        else:
            _logger.info("No lobbies found")
        return lobbies

    async def leave_lobby(self) -> None:
        """Leave the current lobby; the host deletes it instead."""
        if self.lobby_id is None:
            _logger.info("Not in a lobby")
            return
        lobby_id = self.lobby_id
        await self.heartbeat.stop()
        await self._release_lobby(lobby_id, hosting=self.state.is_hosting)
        await self.transport.shutdown()
        self._reset()
        _logger.info("Left lobby %s", lobby_id)
        self.notifications.publish_state(StatusMessage.LEFT_LOBBY)

    async def shutdown(self) -> None:
        """Best-effort teardown when the process exits."""
        lobby_id = self.lobby_id
        hosting = self.state.is_hosting
        await self.heartbeat.stop()
        if lobby_id is not None:
            await self._release_lobby(lobby_id, hosting=hosting)
        await self.transport.shutdown()
        self._reset()

    async def _connect_to_lobby(self, lobby: Lobby) -> Lobby | None:
        _logger.info("Joined lobby %s with %s players", lobby.id, lobby.player_count)
        self._joined_lobby_id = lobby.id
        self._set_state(OrchestratorState.JOINING)
        try:
            join_code = lobby.join_code
            if not join_code:
                raise DirectoryServiceError(
                    DirectoryErrorReason.INVALID_REQUEST,
                    f"Lobby {lobby.id} carries no join code",
                )
            _logger.info("Received code: %s", join_code)
            allocation = await self._call(self.relay_client.join_allocation(join_code))
            await self._call(self.transport.bind_as_client(allocation))
        except _FLOW_ERRORS:
            _logger.exception("Connecting to lobby %s failed", lobby.id)
            await self._roll_back()
            self.notifications.publish_state(StatusMessage.JOIN_FAILED)
            return None

        self._joined_lobby_id = None
        self.lobby_id = lobby.id
        self.join_code = join_code
        self._set_state(OrchestratorState.JOINED)
        self.notifications.publish_state(StatusMessage.MATCH_FOUND)
        self.notifications.publish_match_found()
        return lobby

    def _handle_peer_connected(self, peer_id: int) -> None:
        if not self.state.is_hosting:
            _logger.debug("Ignoring peer %s outside of hosting", peer_id)
            return
        if peer_id in self._connected_peers:
            return
        self._connected_peers.add(peer_id)
        _logger.info("Connected player with id: %s", peer_id)
        self._set_state(OrchestratorState.HOSTING_IN_SESSION)
        self.notifications.publish_state(StatusMessage.PLAYER_FOUND)
        self.notifications.publish_match_found()

    async def _roll_back(self) -> None:
        """Release what an unfinished flow holds and return to IDLE."""
        if self._created_lobby_id is not None:
            await self._release_lobby(self._created_lobby_id, hosting=True)
        elif self._joined_lobby_id is not None:
            await self._release_lobby(self._joined_lobby_id, hosting=False)
        await self.transport.shutdown()
        self._reset()

    async def _release_lobby(self, lobby_id: str, hosting: bool) -> None:
        try:
            if hosting:
                await self._call(self.lobby_client.delete_lobby(lobby_id))
            else:
                player_id = self.identity.player_id()
                if player_id is not None:
                    await self._call(
                        self.lobby_client.remove_player(lobby_id, player_id)
                    )
        except _FLOW_ERRORS:
            _logger.exception("Failed to release lobby %s", lobby_id)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self.request_timeout_seconds)

    @contextlib.asynccontextmanager
    async def _roll_back_on_abort(self, failure_status: str) -> AsyncIterator[None]:
        """Roll back a flow that was cancelled or failed unexpectedly.

        The rollback is shielded so a second cancellation cannot leave a
        created lobby published or a joined slot taken.
        """
        try:
            yield
        except asyncio.CancelledError:
            _logger.warning("Lobby flow cancelled in state %s", self.state.value)
            await asyncio.shield(self._roll_back())
            raise
        except Exception:
            _logger.exception("Lobby flow failed in state %s", self.state.value)
            await self._roll_back()
            self.notifications.publish_state(failure_status)
            raise

    def _ensure_idle(self) -> None:
        if self.state is not OrchestratorState.IDLE:
            raise LobbyStateError(
                f"Cannot start a new lobby action while {self.state.value}"
            )

    def _set_state(self, state: OrchestratorState) -> None:
        if state is not self.state:
            _logger.debug("Orchestrator %s -> %s", self.state.value, state.value)
        self.state = state

    def _reset(self) -> None:
        self.lobby_id = None
        self.join_code = None
        self._created_lobby_id = None
        self._joined_lobby_id = None
        self._connected_peers.clear()
        self._set_state(OrchestratorState.IDLE)
