"""Binding relay allocations to the network transport."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from relay_lobby.domain.errors import TransportError
from relay_lobby.domain.relay import HostAllocation, JoinAllocation, RelayServerData

_logger = logging.getLogger(__name__)

PeerConnectedListener = Callable[[int], None]


class Transport(Protocol):
    """Interface of the reliable network transport."""

    def configure_relay(self, server_data: RelayServerData) -> None:
        """Store the relay endpoint and credentials to use on start."""

    async def start_host(self) -> None:
        """Start listening for peers through the relay."""

    async def start_client(self) -> None:
        """Start connecting to the host through the relay."""

    async def shutdown(self) -> None:
        """Stop the transport and forget its relay binding."""

    def add_peer_connected_listener(self, listener: PeerConnectedListener) -> None:
        """Register a callback fired with the peer id of each new peer."""


@dataclass
class TransportBinder:
    """Applies relay credentials to the transport and starts it."""

    transport: Transport
    bound_as: str | None = None

    @property
    def is_bound(self) -> bool:
        return self.bound_as is not None

    async def bind_as_host(self, allocation: HostAllocation) -> None:
        """Configure the transport with a host allocation and start hosting."""
        self._ensure_unbound()
        self.transport.configure_relay(RelayServerData.for_host(allocation))
        self.bound_as = "host"
        try:
            await self.transport.start_host()
        except Exception:
            self.bound_as = None
            raise
        _logger.info(
            "Transport hosting via relay %s:%s",
            allocation.server.ip,
            allocation.server.port,
        )

    async def bind_as_client(self, allocation: JoinAllocation) -> None:
        """Configure the transport with a join allocation and start the client."""
        self._ensure_unbound()
        self.transport.configure_relay(RelayServerData.for_client(allocation))
        self.bound_as = "client"
        try:
            await self.transport.start_client()
        except Exception:
            self.bound_as = None
            raise
        _logger.info(
            "Transport connecting via relay %s:%s",
            allocation.server.ip,
            allocation.server.port,
        )

    async def shutdown(self) -> None:
        """Stop the transport if it was started."""
        if not self.is_bound:
            return
        self.bound_as = None
        await self.transport.shutdown()

    def on_peer_connected(self, listener: PeerConnectedListener) -> None:
        """Forward peer-connected events of the transport to `listener`."""
        self.transport.add_peer_connected_listener(listener)

    def _ensure_unbound(self) -> None:
        if self.is_bound:
            raise TransportError(f"Transport is already bound as {self.bound_as}")
