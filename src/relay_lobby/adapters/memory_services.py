"""In-process lobby directory and relay service for local play."""

import secrets
import string
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from relay_lobby.adapters.lobby_client import LobbyClient
from relay_lobby.adapters.relay_client import RelayClient
from relay_lobby.domain.errors import (
    DirectoryErrorReason,
    DirectoryServiceError,
    RelayErrorReason,
    RelayServiceError,
    TransportError,
)
from relay_lobby.domain.lobbies import (
    OPEN_SLOTS_FILTER,
    DataObject,
    Lobby,
    QueryFilter,
    QueryOrder,
    matches_filters,
    sort_lobbies,
)
from relay_lobby.domain.relay import (
    HostAllocation,
    JoinAllocation,
    RelayServerData,
    RelayServerEndpoint,
)
from relay_lobby.services.transport import PeerConnectedListener, Transport

_JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class _LobbyEntry:
    lobby: Lobby
    last_heartbeat: float


@dataclass
class InMemoryLobbyDirectory:
    """Lobby directory that reaps lobbies whose heartbeat has expired."""

    expiry_seconds: float = 30
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = _utc_now
    _entries: dict[str, _LobbyEntry] = field(default_factory=dict)

    def create(
        self,
        host_id: str,
        name: str,
        max_players: int,
        is_private: bool,
        data: dict[str, DataObject],
    ) -> Lobby:
        """Create a lobby with the host as its first player."""
        self._reap()
        if not name.strip():
            raise DirectoryServiceError(
                DirectoryErrorReason.INVALID_REQUEST, "Lobby name must not be empty"
            )
        if max_players < 1:
            raise DirectoryServiceError(
                DirectoryErrorReason.INVALID_REQUEST, "Lobby needs at least one slot"
            )
        lobby = Lobby(
            id=uuid.uuid4().hex,
            name=name,
            max_players=max_players,
            available_slots=max_players - 1,
            is_private=is_private,
            created=self.now(),
            host_id=host_id,
            player_ids=(host_id,),
            data=dict(data),
        )
        self._entries[lobby.id] = _LobbyEntry(lobby=lobby, last_heartbeat=self.clock())
        return lobby

    def get(self, lobby_id: str) -> Lobby | None:
        """Return a live lobby by id."""
        self._reap()
        entry = self._entries.get(lobby_id)
        return entry.lobby if entry else None

    def query(
        self, filters: list[QueryFilter], order: list[QueryOrder], count: int
    ) -> list[Lobby]:
        """Return public lobbies matching the filters."""
        self._reap()
        candidates = [
            entry.lobby
            for entry in self._entries.values()
            if not entry.lobby.is_private and matches_filters(entry.lobby, filters)
        ]
        return sort_lobbies(candidates, order)[:count]

    def quick_join(self, player_id: str, filters: list[QueryFilter]) -> Lobby:
        """Join the oldest public lobby that matches the filters."""
        candidates = self.query(
            [*filters, OPEN_SLOTS_FILTER],
            [],
            len(self._entries),
        )
        candidates = [
            lobby for lobby in candidates if player_id not in lobby.player_ids
        ]
        if not candidates:
            raise DirectoryServiceError(
                DirectoryErrorReason.NOT_FOUND, "No open lobby matches the request"
            )
        oldest = min(candidates, key=lambda lobby: lobby.created)
        return self.join(oldest.id, player_id)

    def join(self, lobby_id: str, player_id: str) -> Lobby:
        """Add a player to a lobby."""
        entry = self._require(lobby_id)
        lobby = entry.lobby
        if player_id in lobby.player_ids:
            return lobby
        if lobby.available_slots <= 0:
            raise DirectoryServiceError(
                DirectoryErrorReason.FULL, f"Lobby {lobby_id} is full"
            )
        entry.lobby = replace(
            lobby,
            player_ids=(*lobby.player_ids, player_id),
            available_slots=lobby.available_slots - 1,
        )
        return entry.lobby

    def heartbeat(self, lobby_id: str) -> None:
        """Refresh the expiry deadline of a lobby."""
        entry = self._require(lobby_id)
        entry.last_heartbeat = self.clock()

    def remove_player(self, lobby_id: str, player_id: str) -> None:
        """Remove a player; the lobby is deleted once empty."""
        self._reap()
        entry = self._entries.get(lobby_id)
        if entry is None or player_id not in entry.lobby.player_ids:
            return
        lobby = entry.lobby
        remaining = tuple(pid for pid in lobby.player_ids if pid != player_id)
        if not remaining:
            self._entries.pop(lobby_id, None)
            return
        entry.lobby = replace(
            lobby,
            player_ids=remaining,
            available_slots=lobby.available_slots + 1,
            host_id=remaining[0] if lobby.host_id == player_id else lobby.host_id,
        )

    def delete(self, lobby_id: str) -> None:
        """Delete a lobby if it still exists."""
        self._entries.pop(lobby_id, None)

    def _require(self, lobby_id: str) -> _LobbyEntry:
        self._reap()
        entry = self._entries.get(lobby_id)
        if entry is None:
            raise DirectoryServiceError(
                DirectoryErrorReason.NOT_FOUND, f"Lobby {lobby_id} not found"
            )
        return entry

    def _reap(self) -> None:
        deadline = self.clock() - self.expiry_seconds
        expired = [
            lobby_id
            for lobby_id, entry in self._entries.items()
            if entry.last_heartbeat < deadline
        ]
        for lobby_id in expired:
            self._entries.pop(lobby_id, None)


@dataclass
class LocalLobbyClient(LobbyClient):
    """Lobby client bound to one player against a shared local directory."""

    directory: InMemoryLobbyDirectory
    player_id_provider: Callable[[], str | None]

    async def create_lobby(
        self,
        name: str,
        max_players: int,
        is_private: bool,
        data: dict[str, DataObject],
    ) -> Lobby:
        return self.directory.create(
            self._player_id(), name, max_players, is_private, data
        )

    async def quick_join(self, filters: list[QueryFilter] | None = None) -> Lobby:
        return self.directory.quick_join(self._player_id(), filters or [])

    async def query_lobbies(
        self, filters: list[QueryFilter], order: list[QueryOrder], count: int
    ) -> list[Lobby]:
        return self.directory.query(filters, order, count)

    async def join_lobby_by_id(self, lobby_id: str) -> Lobby:
        return self.directory.join(lobby_id, self._player_id())

    async def send_heartbeat(self, lobby_id: str) -> None:
        self.directory.heartbeat(lobby_id)

    async def remove_player(self, lobby_id: str, player_id: str) -> None:
        self.directory.remove_player(lobby_id, player_id)

    async def delete_lobby(self, lobby_id: str) -> None:
        self.directory.delete(lobby_id)

    def _player_id(self) -> str:
        player_id = self.player_id_provider()
        if not player_id:
            raise DirectoryServiceError(
                DirectoryErrorReason.INVALID_REQUEST, "Player is not signed in"
            )
        return player_id


def random_join_code(length: int = 6) -> str:
    """Generate a short uppercase alphanumeric join code."""
    return "".join(secrets.choice(_JOIN_CODE_ALPHABET) for _ in range(length))


@dataclass
class InMemoryRelayService(RelayClient):
    """Relay allocation service kept in process memory."""

    server: RelayServerEndpoint = field(
        default_factory=lambda: RelayServerEndpoint(ip="127.0.0.1", port=7777)
    )
    code_factory: Callable[[], str] = random_join_code
    allocations: dict[str, HostAllocation] = field(default_factory=dict)
    capacities: dict[str, int] = field(default_factory=dict)
    join_codes: dict[str, str] = field(default_factory=dict)
    joined: dict[str, list[JoinAllocation]] = field(default_factory=dict)

    async def create_allocation(self, max_connections: int) -> HostAllocation:
        if max_connections < 1:
            raise RelayServiceError(
                RelayErrorReason.UNKNOWN, "max_connections must be positive"
            )
        allocation_uuid = uuid.uuid4()
        allocation = HostAllocation(
            allocation_id=str(allocation_uuid),
            allocation_id_bytes=allocation_uuid.bytes,
            key=secrets.token_bytes(64),
            connection_data=secrets.token_bytes(16),
            server=self.server,
        )
        self.allocations[allocation.allocation_id] = allocation
        self.capacities[allocation.allocation_id] = max_connections
        self.joined[allocation.allocation_id] = []
        return allocation

    async def get_join_code(self, allocation_id: str) -> str:
        if allocation_id not in self.allocations:
            raise RelayServiceError(
                RelayErrorReason.UNKNOWN, f"Allocation {allocation_id} not found"
            )
        for code, target in self.join_codes.items():
            if target == allocation_id:
                return code
        code = self.code_factory()
        self.join_codes[code] = allocation_id
        return code

    async def join_allocation(self, join_code: str) -> JoinAllocation:
        allocation_id = self.join_codes.get(join_code)
        if allocation_id is None:
            raise RelayServiceError(
                RelayErrorReason.INVALID_CODE, f"Join code {join_code!r} is not valid"
            )
        host = self.allocations[allocation_id]
        peers = self.joined[allocation_id]
        if len(peers) >= self.capacities[allocation_id]:
            raise RelayServiceError(
                RelayErrorReason.QUOTA_EXCEEDED,
                f"Allocation {allocation_id} has no free connection",
            )
        allocation_uuid = uuid.uuid4()
        allocation = JoinAllocation(
            allocation_id=str(allocation_uuid),
            allocation_id_bytes=allocation_uuid.bytes,
            key=secrets.token_bytes(64),
            connection_data=secrets.token_bytes(16),
            host_connection_data=host.connection_data,
            server=host.server,
        )
        peers.append(allocation)
        return allocation

    def release_host(self, connection_data: bytes) -> None:
        """Forget the host allocation owning `connection_data` and its join code."""
        released = [
            allocation_id
            for allocation_id, allocation in self.allocations.items()
            if allocation.connection_data == connection_data
        ]
        for allocation_id in released:
            self.allocations.pop(allocation_id, None)
            self.capacities.pop(allocation_id, None)
            self.joined.pop(allocation_id, None)
        self.join_codes = {
            code: target
            for code, target in self.join_codes.items()
            if target not in released
        }


@dataclass
class LoopbackRelayNetwork:
    """Routes loopback transports to the host owning a connection.

    When linked to a relay service, a host leaving the network releases its
    allocation there.
    """

    hosts: dict[bytes, "LoopbackTransport"] = field(default_factory=dict)
    relay: InMemoryRelayService | None = None

    def register_host(self, transport: "LoopbackTransport") -> None:
        server_data = transport.require_server_data()
        self.hosts[server_data.connection_data] = transport

    def unregister(self, transport: "LoopbackTransport") -> None:
        released = [
            connection for connection, host in self.hosts.items() if host is transport
        ]
        for connection in released:
            del self.hosts[connection]
            if self.relay is not None:
                self.relay.release_host(connection)

    def connect(self, client: "LoopbackTransport") -> None:
        server_data = client.require_server_data()
        host = self.hosts.get(server_data.host_connection_data or b"")
        if host is None:
            raise TransportError("No host is listening on this relay allocation")
        host.accept_peer(server_data.allocation_id_bytes)


@dataclass
class LoopbackTransport(Transport):
    """Transport that connects peers inside one process."""

    network: LoopbackRelayNetwork
    server_data: RelayServerData | None = None
    running: bool = False
    _listeners: list[PeerConnectedListener] = field(default_factory=list)
    _peers: dict[bytes, int] = field(default_factory=dict)

    def configure_relay(self, server_data: RelayServerData) -> None:
        if self.running:
            raise TransportError("Cannot reconfigure a running transport")
        self.server_data = server_data

    async def start_host(self) -> None:
        server_data = self.require_server_data()
        if not server_data.is_host:
            raise TransportError("Client relay data cannot start a host")
        self.network.register_host(self)
        self.running = True

    async def start_client(self) -> None:
        server_data = self.require_server_data()
        if server_data.is_host:
            raise TransportError("Host relay data cannot start a client")
        self.network.connect(self)
        self.running = True

    async def shutdown(self) -> None:
        self.network.unregister(self)
        self.running = False
        self.server_data = None
        self._peers.clear()

    def add_peer_connected_listener(self, listener: PeerConnectedListener) -> None:
        self._listeners.append(listener)

    def accept_peer(self, peer_allocation: bytes) -> None:
        """Register a connecting peer and notify listeners once per peer."""
        if peer_allocation in self._peers:
            return
        peer_id = len(self._peers) + 1
        self._peers[peer_allocation] = peer_id
        for listener in list(self._listeners):
            listener(peer_id)

    def require_server_data(self) -> RelayServerData:
        if self.server_data is None:
            raise TransportError("Relay server data is not configured")
        return self.server_data
