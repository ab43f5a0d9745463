"""Lobby directory service client."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, TypeVar

import httpx

from relay_lobby.domain.errors import DirectoryErrorReason, DirectoryServiceError
from relay_lobby.domain.lobbies import (
    OPEN_SLOTS_FILTER,
    DataObject,
    Lobby,
    QueryFilter,
    QueryOrder,
    Visibility,
)

T = TypeVar("T")

_STATUS_REASONS = {
    400: DirectoryErrorReason.INVALID_REQUEST,
    404: DirectoryErrorReason.NOT_FOUND,
    409: DirectoryErrorReason.FULL,
    422: DirectoryErrorReason.INVALID_REQUEST,
    429: DirectoryErrorReason.RATE_LIMITED,
}

# JSONDecodeError is a ValueError.
_PAYLOAD_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


class LobbyClient(Protocol):
    """Interface for lobby directory interactions."""

    async def create_lobby(
        self,
        name: str,
        max_players: int,
        is_private: bool,
        data: dict[str, DataObject],
    ) -> Lobby:
        """Publish a new lobby owned by the caller."""

    async def quick_join(self, filters: list[QueryFilter] | None = None) -> Lobby:
        """Join any lobby matching the filters."""

    async def query_lobbies(
        self, filters: list[QueryFilter], order: list[QueryOrder], count: int
    ) -> list[Lobby]:
        """List lobbies matching the filters, ordered, at most `count`."""

    async def join_lobby_by_id(self, lobby_id: str) -> Lobby:
        """Join a specific lobby."""

    async def send_heartbeat(self, lobby_id: str) -> None:
        """Keep a hosted lobby alive."""

    async def remove_player(self, lobby_id: str, player_id: str) -> None:
        """Remove a player from a lobby."""

    async def delete_lobby(self, lobby_id: str) -> None:
        """Delete a hosted lobby."""


@dataclass
class HttpxLobbyClient(LobbyClient):
    """Lobby directory client implemented with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    token_provider: Callable[[], str | None]
    timeout: float = 10

    @classmethod
    def create(
        cls, base_url: str, token_provider: Callable[[], str | None]
    ) -> "HttpxLobbyClient":
        """Create a lobby client with a managed httpx session."""
        return cls(
            base_url=base_url,
            http_client=httpx.AsyncClient(),
            token_provider=token_provider,
        )

    async def create_lobby(
        self,
        name: str,
        max_players: int,
        is_private: bool,
        data: dict[str, DataObject],
    ) -> Lobby:
        """Create a lobby with the given metadata."""
        payload = await self._request(
            "POST",
            "/create",
            {
                "name": name,
                "maxPlayers": max_players,
                "isPrivate": is_private,
                "data": {
                    key: {"value": entry.value, "visibility": entry.visibility.value}
                    for key, entry in data.items()
                },
            },
        )
        return _parse_payload(lambda: parse_lobby(payload), "lobby")

    async def quick_join(self, filters: list[QueryFilter] | None = None) -> Lobby:
        """Let the directory pick an open lobby and join it."""
        payload = await self._request(
            "POST",
            "/lobbies/quickjoin",
            {"filter": [_filter_json(item) for item in filters or [OPEN_SLOTS_FILTER]]},
        )
        return _parse_payload(lambda: parse_lobby(payload), "lobby")

    async def query_lobbies(
        self, filters: list[QueryFilter], order: list[QueryOrder], count: int
    ) -> list[Lobby]:
        """Query lobbies with filters and an ordering chain."""
        payload = await self._request(
            "POST",
            "/lobbies/query",
            {
                "count": count,
                "filter": [_filter_json(item) for item in filters],
                "order": [
                    {"field": item.field.value, "asc": item.ascending} for item in order
                ],
            },
        )
        lobbies = _parse_payload(
            lambda: [parse_lobby(row) for row in payload.get("results", [])],
            "lobby query results",
        )
        return lobbies[:count]

    async def join_lobby_by_id(self, lobby_id: str) -> Lobby:
        """Join a lobby by id."""
        payload = await self._request("POST", f"/{lobby_id}/join", {})
        return _parse_payload(lambda: parse_lobby(payload), "lobby")

    async def send_heartbeat(self, lobby_id: str) -> None:
        """Send a heartbeat ping for a hosted lobby."""
        await self._request("POST", f"/{lobby_id}/heartbeat", {})

    async def remove_player(self, lobby_id: str, player_id: str) -> None:
        """Remove a player; an unknown lobby or player is tolerated."""
        try:
            await self._request("DELETE", f"/{lobby_id}/players/{player_id}")
        except DirectoryServiceError as exc:
            if exc.reason is not DirectoryErrorReason.NOT_FOUND:
                raise

    async def delete_lobby(self, lobby_id: str) -> None:
        """Delete a lobby; an already deleted lobby is tolerated."""
        try:
            await self._request("DELETE", f"/{lobby_id}")
        except DirectoryServiceError as exc:
            if exc.reason is not DirectoryErrorReason.NOT_FOUND:
                raise

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _request(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> dict[str, object]:
        headers = {}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.RequestError as exc:
            raise DirectoryServiceError(
                DirectoryErrorReason.UNAVAILABLE,
                f"Lobby service unreachable: {exc}",
            ) from exc
        if response.is_error:
            reason = _STATUS_REASONS.get(
                response.status_code, DirectoryErrorReason.UNKNOWN
            )
            raise DirectoryServiceError(
                reason,
                f"Lobby service {method} {path} failed with {response.status_code}",
            )
        if not response.content:
            return {}
        return _parse_payload(response.json, f"{method} {path}")


def parse_lobby(row: dict[str, object]) -> Lobby:
    """Convert a lobby JSON payload to a domain object."""
    players = row.get("players") or []
    data = row.get("data") or {}
    created = row.get("created")
    return Lobby(
        id=str(row["id"]),
        name=str(row.get("name", "")),
        max_players=int(row.get("maxPlayers", 0)),
        available_slots=int(row.get("availableSlots", 0)),
        is_private=bool(row.get("isPrivate", False)),
        created=(
            datetime.fromisoformat(str(created)) if created else datetime.now(tz=UTC)
        ),
        host_id=row.get("hostId"),
        player_ids=tuple(str(player["id"]) for player in players),
        data={
            key: DataObject(
                value=str(entry.get("value", "")),
                visibility=Visibility(entry.get("visibility", "public")),
            )
            for key, entry in data.items()
        },
    )


def _filter_json(query_filter: QueryFilter) -> dict[str, str]:
    return {
        "field": query_filter.field.value,
        "op": query_filter.op.value,
        "value": query_filter.value,
    }


def _parse_payload(parse: Callable[[], T], what: str) -> T:
    try:
        return parse()
    except _PAYLOAD_ERRORS as exc:
        raise DirectoryServiceError(
            DirectoryErrorReason.UNKNOWN,
            f"Lobby service returned a malformed {what} payload: {exc!r}",
        ) from exc
