"""UDP transport that binds to a relay server allocation.

Only the relay handshake lives here: BIND authenticated with the allocation
key, CONNECT_REQUEST from clients, and ACCEPTED notifications that announce
peers. Game traffic framing belongs to the transport layer above.

Message format: [version:1][type:1][length:2][payload:length]
"""

import asyncio
import hashlib
import hmac
import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum

from relay_lobby.domain.errors import TransportError
from relay_lobby.domain.relay import RelayServerData
from relay_lobby.services.transport import PeerConnectedListener, Transport

_logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
HEADER = struct.Struct(">BBH")
ALLOCATION_ID_SIZE = 16
SIGNATURE_SIZE = 32


class RelayMessageType(IntEnum):
    """Relay handshake message types."""

    BIND = 0x01
    BIND_RECEIVED = 0x02
    CONNECT_REQUEST = 0x03
    ACCEPTED = 0x06
    DISCONNECT = 0x09
    ERROR = 0x0C


def encode_message(message_type: RelayMessageType, payload: bytes = b"") -> bytes:
    """Frame a relay message."""
    return HEADER.pack(PROTOCOL_VERSION, message_type, len(payload)) + payload


def decode_message(data: bytes) -> tuple[RelayMessageType, bytes]:
    """Parse a relay message into its type and payload."""
    if len(data) < HEADER.size:
        raise ValueError("Message too short")
    version, message_type, length = HEADER.unpack_from(data)
    if version != PROTOCOL_VERSION:
        raise ValueError(f"Unsupported relay protocol version {version}")
    payload = data[HEADER.size : HEADER.size + length]
    if len(payload) != length:
        raise ValueError("Truncated relay message")
    return RelayMessageType(message_type), payload


def sign_connection_data(key: bytes, connection_data: bytes) -> bytes:
    """HMAC-SHA256 proving ownership of the allocation key."""
    return hmac.new(key, connection_data, hashlib.sha256).digest()


def bind_payload(server_data: RelayServerData) -> bytes:
    """Build the BIND payload for an allocation."""
    connection_data = server_data.connection_data
    return (
        server_data.allocation_id_bytes
        + struct.pack(">H", len(connection_data))
        + connection_data
        + sign_connection_data(server_data.key, connection_data)
    )


def connect_payload(server_data: RelayServerData) -> bytes:
    """Build the CONNECT_REQUEST payload addressed to the host."""
    host_connection_data = server_data.host_connection_data or b""
    return (
        server_data.allocation_id_bytes
        + struct.pack(">H", len(host_connection_data))
        + host_connection_data
    )


class _RelayDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, owner: "DatagramRelayTransport") -> None:
        self.owner = owner

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.owner.handle_datagram(data)

    def error_received(self, exc: Exception) -> None:
        _logger.warning("Relay socket error: %s", exc)


@dataclass
class DatagramRelayTransport(Transport):
    """Transport speaking the relay handshake over asyncio UDP."""

    bind_timeout: float = 5
    server_data: RelayServerData | None = None
    connected: bool = False
    _listeners: list[PeerConnectedListener] = field(default_factory=list)
    _peers: dict[bytes, int] = field(default_factory=dict)
    _socket: asyncio.DatagramTransport | None = None
    _bound: asyncio.Event | None = None

    def configure_relay(self, server_data: RelayServerData) -> None:
        """Store relay credentials for the next start."""
        if self._socket is not None:
            raise TransportError("Cannot reconfigure a running transport")
        self.server_data = server_data

    async def start_host(self) -> None:
        """Bind the host allocation and wait for peers."""
        server_data = self._require_server_data()
        if not server_data.is_host:
            raise TransportError("Client relay data cannot start a host")
        await self._open_and_bind(server_data)

    async def start_client(self) -> None:
        """Bind the client allocation and ask the relay to reach the host."""
        server_data = self._require_server_data()
        if server_data.is_host:
            raise TransportError("Host relay data cannot start a client")
        await self._open_and_bind(server_data)
        self._send(RelayMessageType.CONNECT_REQUEST, connect_payload(server_data))

    async def shutdown(self) -> None:
        """Send DISCONNECT and close the socket."""
        if self._socket is None:
            return
        if self.server_data is not None:
            self._send(
                RelayMessageType.DISCONNECT, self.server_data.allocation_id_bytes
            )
        self._socket.close()
        self._socket = None
        self._bound = None
        self.server_data = None
        self.connected = False
        self._peers.clear()

    def add_peer_connected_listener(self, listener: PeerConnectedListener) -> None:
        self._listeners.append(listener)

    def handle_datagram(self, data: bytes) -> None:
        """Process one datagram received from the relay server."""
        try:
            message_type, payload = decode_message(data)
        except ValueError as exc:
            _logger.debug("Dropping malformed relay datagram: %s", exc)
            return

        if message_type is RelayMessageType.BIND_RECEIVED:
            if self._bound is not None:
                self._bound.set()
        elif message_type is RelayMessageType.ACCEPTED:
            self._handle_accepted(payload)
        elif message_type is RelayMessageType.ERROR:
            _logger.warning("Relay server reported error: %s", payload.hex())

    def _handle_accepted(self, payload: bytes) -> None:
        if self.server_data is None:
            return
        if not self.server_data.is_host:
            self.connected = True
            _logger.info("Connected to host through relay")
            return
        peer_allocation = payload[:ALLOCATION_ID_SIZE]
        if len(peer_allocation) != ALLOCATION_ID_SIZE or peer_allocation in self._peers:
            return
        peer_id = len(self._peers) + 1
        self._peers[peer_allocation] = peer_id
        self.connected = True
        for listener in list(self._listeners):
            try:
                listener(peer_id)
            except Exception:
                _logger.exception("Peer connected listener failed")

    async def _open_and_bind(self, server_data: RelayServerData) -> None:
        if self._socket is not None:
            raise TransportError("Transport is already running")
        loop = asyncio.get_running_loop()
        self._bound = asyncio.Event()
        try:
            socket, _ = await loop.create_datagram_endpoint(
                lambda: _RelayDatagramProtocol(self),
                remote_addr=(server_data.ip, server_data.port),
            )
        except OSError as exc:
            raise TransportError(f"Cannot open relay socket: {exc}") from exc
        self._socket = socket
        self._send(RelayMessageType.BIND, bind_payload(server_data))
        try:
            await asyncio.wait_for(self._bound.wait(), timeout=self.bind_timeout)
        except TimeoutError as exc:
            await self.shutdown()
            raise TransportError("Relay server did not acknowledge BIND") from exc

    def _send(self, message_type: RelayMessageType, payload: bytes) -> None:
        if self._socket is not None:
            self._socket.sendto(encode_message(message_type, payload))

    def _require_server_data(self) -> RelayServerData:
        if self.server_data is None:
            raise TransportError("Relay server data is not configured")
        return self.server_data
