"""Domain models for relay allocations."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RelayServerEndpoint:
    """Address of the relay server assigned to an allocation."""

    ip: str
    port: int


@dataclass(frozen=True)
class HostAllocation:
    """Relay allocation reserved by the hosting player."""

    allocation_id: str
    allocation_id_bytes: bytes
    key: bytes
    connection_data: bytes
    server: RelayServerEndpoint


@dataclass(frozen=True)
class JoinAllocation:
    """Relay allocation obtained by a player joining through a join code."""

    allocation_id: str
    allocation_id_bytes: bytes
    key: bytes
    connection_data: bytes
    host_connection_data: bytes
    server: RelayServerEndpoint


@dataclass(frozen=True)
class RelayServerData:
    """Everything the transport needs to bind to the relay server."""

    ip: str
    port: int
    allocation_id_bytes: bytes
    key: bytes
    connection_data: bytes
    host_connection_data: bytes | None = None

    @property
    def is_host(self) -> bool:
        """Host bindings carry no host connection data."""
        return self.host_connection_data is None

    @classmethod
    def for_host(cls, allocation: HostAllocation) -> "RelayServerData":
        """Build server data for a hosting transport."""
        return cls(
            ip=allocation.server.ip,
            port=allocation.server.port,
            allocation_id_bytes=allocation.allocation_id_bytes,
            key=allocation.key,
            connection_data=allocation.connection_data,
        )

    @classmethod
    def for_client(cls, allocation: JoinAllocation) -> "RelayServerData":
        """Build server data for a connecting client transport."""
        return cls(
            ip=allocation.server.ip,
            port=allocation.server.port,
            allocation_id_bytes=allocation.allocation_id_bytes,
            key=allocation.key,
            connection_data=allocation.connection_data,
            host_connection_data=allocation.host_connection_data,
        )
