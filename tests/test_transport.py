"""Tests for transport binding and the relay UDP handshake."""

import asyncio
import struct

import pytest

from relay_lobby.adapters.memory_services import LoopbackRelayNetwork, LoopbackTransport
from relay_lobby.adapters.relay_transport import (
    HEADER,
    DatagramRelayTransport,
    RelayMessageType,
    bind_payload,
    decode_message,
    encode_message,
    sign_connection_data,
)
from relay_lobby.domain.errors import TransportError
from relay_lobby.domain.relay import (
    HostAllocation,
    JoinAllocation,
    RelayServerData,
    RelayServerEndpoint,
)
from relay_lobby.services.transport import TransportBinder

HOST_ID = b"\x10" * 16
CLIENT_ID = b"\x20" * 16


def _host_allocation(server: RelayServerEndpoint) -> HostAllocation:
    return HostAllocation(
        allocation_id="host",
        allocation_id_bytes=HOST_ID,
        key=b"host-key",
        connection_data=b"host-conn",
        server=server,
    )


def _join_allocation(server: RelayServerEndpoint) -> JoinAllocation:
    return JoinAllocation(
        allocation_id="client",
        allocation_id_bytes=CLIENT_ID,
        key=b"client-key",
        connection_data=b"client-conn",
        host_connection_data=b"host-conn",
        server=server,
    )


LOCAL_SERVER = RelayServerEndpoint(ip="127.0.0.1", port=7777)


def test_binder_rejects_second_bind() -> None:
    binder = TransportBinder(LoopbackTransport(LoopbackRelayNetwork()))

    async def scenario() -> None:
        await binder.bind_as_host(_host_allocation(LOCAL_SERVER))
        assert binder.bound_as == "host"
        with pytest.raises(TransportError):
            await binder.bind_as_client(_join_allocation(LOCAL_SERVER))
        await binder.shutdown()
        assert not binder.is_bound
        await binder.shutdown()

    asyncio.run(scenario())


def test_binder_resets_when_start_fails() -> None:
    binder = TransportBinder(LoopbackTransport(LoopbackRelayNetwork()))

    with pytest.raises(TransportError):
        asyncio.run(binder.bind_as_client(_join_allocation(LOCAL_SERVER)))

    assert not binder.is_bound


def test_codec_frames_and_validates_messages() -> None:
    framed = encode_message(RelayMessageType.ACCEPTED, b"abc")

    assert framed[: HEADER.size] == b"\x01\x06\x00\x03"
    assert decode_message(framed) == (RelayMessageType.ACCEPTED, b"abc")
    with pytest.raises(ValueError):
        decode_message(b"\x01")
    with pytest.raises(ValueError):
        decode_message(b"\x02\x06\x00\x00")
    with pytest.raises(ValueError):
        decode_message(b"\x01\x06\x00\x05ab")


def test_bind_payload_is_signed_with_allocation_key() -> None:
    server_data = RelayServerData.for_host(_host_allocation(LOCAL_SERVER))

    payload = bind_payload(server_data)

    assert payload[:16] == HOST_ID
    (length,) = struct.unpack(">H", payload[16:18])
    assert payload[18 : 18 + length] == b"host-conn"
    assert payload[18 + length :] == sign_connection_data(b"host-key", b"host-conn")


def test_host_reports_each_accepted_peer_once() -> None:
    transport = DatagramRelayTransport()
    transport.configure_relay(RelayServerData.for_host(_host_allocation(LOCAL_SERVER)))
    peers: list[int] = []
    transport.add_peer_connected_listener(peers.append)

    transport.handle_datagram(encode_message(RelayMessageType.ACCEPTED, CLIENT_ID))
    transport.handle_datagram(encode_message(RelayMessageType.ACCEPTED, CLIENT_ID))
    transport.handle_datagram(encode_message(RelayMessageType.ACCEPTED, b"\x30" * 16))
    transport.handle_datagram(b"garbage")

    assert peers == [1, 2]


class _FakeRelayServer(asyncio.DatagramProtocol):
    """Acknowledges BINDs and forwards CONNECT_REQUESTs to the bound host."""

    def __init__(self) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.host_addr: tuple[str, int] | None = None
        self.client_addr: tuple[str, int] | None = None
        self.received: list[RelayMessageType] = []

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        assert self.transport is not None
        message_type, payload = decode_message(data)
        self.received.append(message_type)
        if message_type is RelayMessageType.BIND:
            if payload[:16] == HOST_ID:
                self.host_addr = addr
            else:
                self.client_addr = addr
            self.transport.sendto(encode_message(RelayMessageType.BIND_RECEIVED), addr)
        elif message_type is RelayMessageType.CONNECT_REQUEST:
            assert self.host_addr is not None
            self.transport.sendto(
                encode_message(RelayMessageType.ACCEPTED, payload[:16]), self.host_addr
            )
            self.transport.sendto(encode_message(RelayMessageType.ACCEPTED, HOST_ID), addr)


def test_udp_handshake_connects_client_to_host() -> None:
    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        server_socket, _ = await loop.create_datagram_endpoint(
            _FakeRelayServer, local_addr=("127.0.0.1", 0)
        )
        port = server_socket.get_extra_info("sockname")[1]
        endpoint = RelayServerEndpoint(ip="127.0.0.1", port=port)
        host = DatagramRelayTransport(bind_timeout=2)
        client = DatagramRelayTransport(bind_timeout=2)
        peers: list[int] = []
        host.add_peer_connected_listener(peers.append)
        try:
            host.configure_relay(RelayServerData.for_host(_host_allocation(endpoint)))
            await host.start_host()
            client.configure_relay(
                RelayServerData.for_client(_join_allocation(endpoint))
            )
            await client.start_client()
            for _ in range(50):
                if peers and client.connected:
                    break
                await asyncio.sleep(0.01)
            assert peers == [1]
            assert client.connected
        finally:
            await client.shutdown()
            await host.shutdown()
            server_socket.close()

    asyncio.run(scenario())


def test_unanswered_bind_times_out() -> None:
    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        silent_socket, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol, local_addr=("127.0.0.1", 0)
        )
        port = silent_socket.get_extra_info("sockname")[1]
        transport = DatagramRelayTransport(bind_timeout=0.05)
        transport.configure_relay(
            RelayServerData.for_host(
                _host_allocation(RelayServerEndpoint(ip="127.0.0.1", port=port))
            )
        )
        try:
            with pytest.raises(TransportError):
                await transport.start_host()
            assert transport.server_data is None
        finally:
            silent_socket.close()

    asyncio.run(scenario())
