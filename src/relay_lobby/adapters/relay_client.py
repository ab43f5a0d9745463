"""Relay allocation service client."""

import base64
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

import httpx

from relay_lobby.domain.errors import RelayErrorReason, RelayServiceError
from relay_lobby.domain.relay import HostAllocation, JoinAllocation, RelayServerEndpoint

T = TypeVar("T")

_STATUS_REASONS = {
    400: RelayErrorReason.INVALID_CODE,
    404: RelayErrorReason.INVALID_CODE,
    403: RelayErrorReason.QUOTA_EXCEEDED,
    429: RelayErrorReason.QUOTA_EXCEEDED,
}

# JSONDecodeError and binascii.Error are ValueErrors.
_PAYLOAD_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


class RelayClient(Protocol):
    """Interface for relay service interactions."""

    async def create_allocation(self, max_connections: int) -> HostAllocation:
        """Reserve a relay allocation for a host."""

    async def get_join_code(self, allocation_id: str) -> str:
        """Return the join code mapped to a host allocation."""

    async def join_allocation(self, join_code: str) -> JoinAllocation:
        """Resolve a join code into a client allocation."""


@dataclass
class HttpxRelayClient(RelayClient):
    """Relay client implemented with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    token_provider: Callable[[], str | None]
    timeout: float = 10

    @classmethod
    def create(
        cls, base_url: str, token_provider: Callable[[], str | None]
    ) -> "HttpxRelayClient":
        """Create a relay client with a managed httpx session."""
        return cls(
            base_url=base_url,
            http_client=httpx.AsyncClient(),
            token_provider=token_provider,
        )

    async def create_allocation(self, max_connections: int) -> HostAllocation:
        """Create a host allocation bounded to `max_connections` peers."""
        return await self._post(
            "/allocate", {"maxConnections": max_connections}, _parse_host_allocation
        )

    async def get_join_code(self, allocation_id: str) -> str:
        """Fetch the join code for an allocation."""
        return await self._post(
            "/joincode", {"allocationId": allocation_id}, _parse_join_code
        )

    async def join_allocation(self, join_code: str) -> JoinAllocation:
        """Join the allocation behind a join code."""
        return await self._post(
            "/join", {"joinCode": join_code}, _parse_join_allocation
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _post(
        self,
        path: str,
        payload: dict[str, object],
        parse: Callable[[dict[str, object]], T],
    ) -> T:
        headers = {}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self.http_client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.RequestError as exc:
            raise RelayServiceError(
                RelayErrorReason.UNAVAILABLE, f"Relay service unreachable: {exc}"
            ) from exc
        if response.is_error:
            reason = _STATUS_REASONS.get(response.status_code, RelayErrorReason.UNKNOWN)
            raise RelayServiceError(
                reason, f"Relay service {path} failed with {response.status_code}"
            )
        try:
            return parse(response.json())
        except _PAYLOAD_ERRORS as exc:
            raise RelayServiceError(
                RelayErrorReason.UNKNOWN,
                f"Relay service {path} returned a malformed payload: {exc!r}",
            ) from exc


def _parse_host_allocation(payload: dict[str, object]) -> HostAllocation:
    allocation = _allocation_payload(payload)
    return HostAllocation(
        allocation_id=str(allocation["allocationId"]),
        allocation_id_bytes=_decode_bytes(allocation["allocationIdBytes"]),
        key=_decode_bytes(allocation["key"]),
        connection_data=_decode_bytes(allocation["connectionData"]),
        server=_parse_server(allocation),
    )


def _parse_join_allocation(payload: dict[str, object]) -> JoinAllocation:
    allocation = _allocation_payload(payload)
    return JoinAllocation(
        allocation_id=str(allocation["allocationId"]),
        allocation_id_bytes=_decode_bytes(allocation["allocationIdBytes"]),
        key=_decode_bytes(allocation["key"]),
        connection_data=_decode_bytes(allocation["connectionData"]),
        host_connection_data=_decode_bytes(allocation["hostConnectionData"]),
        server=_parse_server(allocation),
    )


def _parse_join_code(payload: dict[str, object]) -> str:
    data = payload.get("data", payload)
    return str(data["joinCode"])


def _allocation_payload(payload: dict[str, object]) -> dict[str, object]:
    data = payload.get("data", payload)
    return data.get("allocation", data)


def _parse_server(allocation: dict[str, object]) -> RelayServerEndpoint:
    server = allocation["relayServer"]
    return RelayServerEndpoint(ip=str(server["ipV4"]), port=int(server["port"]))


def _decode_bytes(raw: object) -> bytes:
    """Relay byte fields travel base64 encoded."""
    return base64.b64decode(str(raw), validate=True)
