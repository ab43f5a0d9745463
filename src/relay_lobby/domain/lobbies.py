"""Domain models for lobbies and lobby queries."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

JOIN_CODE_KEY = "joinCode"


class Visibility(Enum):
    """Who can read a lobby data entry."""

    PUBLIC = "public"
    MEMBER = "member"
    PRIVATE = "private"


@dataclass(frozen=True)
class DataObject:
    """Single lobby metadata value with its visibility."""

    value: str
    visibility: Visibility = Visibility.PUBLIC


@dataclass(frozen=True)
class Lobby:
    """A joinable session published in the lobby directory."""

    id: str
    name: str
    max_players: int
    available_slots: int
    is_private: bool
    created: datetime
    host_id: str | None = None
    player_ids: tuple[str, ...] = ()
    data: dict[str, DataObject] = field(default_factory=dict)

    @property
    def player_count(self) -> int:
        """Number of players currently in the lobby."""
        return len(self.player_ids)

    @property
    def join_code(self) -> str | None:
        """Relay join code published by the host, if readable."""
        entry = self.data.get(JOIN_CODE_KEY)
        return entry.value if entry else None


class LobbyField(Enum):
    """Built-in lobby fields usable in filters and ordering."""

    AVAILABLE_SLOTS = "AvailableSlots"
    MAX_PLAYERS = "MaxPlayers"
    NAME = "Name"
    CREATED = "Created"


class FilterOp(Enum):
    """Comparison operator of a query filter."""

    EQ = "EQ"
    NE = "NE"
    LT = "LT"
    LE = "LE"
    GT = "GT"
    GE = "GE"


@dataclass(frozen=True)
class QueryFilter:
    """Restricts query results to lobbies where `field op value` holds."""

    field: LobbyField
    op: FilterOp
    value: str


@dataclass(frozen=True)
class QueryOrder:
    """One step of a result ordering chain."""

    field: LobbyField
    ascending: bool = True


OPEN_SLOTS_FILTER = QueryFilter(LobbyField.AVAILABLE_SLOTS, FilterOp.GT, "0")

LOBBY_LIST_ORDER: tuple[QueryOrder, ...] = (
    QueryOrder(LobbyField.AVAILABLE_SLOTS, ascending=True),
    QueryOrder(LobbyField.CREATED, ascending=False),
    QueryOrder(LobbyField.NAME, ascending=False),
)


def field_value(lobby: Lobby, lobby_field: LobbyField) -> object:
    """Return the comparable value of a built-in field."""
    if lobby_field is LobbyField.AVAILABLE_SLOTS:
        return lobby.available_slots
    if lobby_field is LobbyField.MAX_PLAYERS:
        return lobby.max_players
    if lobby_field is LobbyField.NAME:
        return lobby.name
    return lobby.created


def matches_filter(lobby: Lobby, query_filter: QueryFilter) -> bool:  # noqa: PLR0911
    """Check a single filter against a lobby."""
    actual = field_value(lobby, query_filter.field)
    expected = _coerce(query_filter.field, query_filter.value)
    if query_filter.op is FilterOp.EQ:
        return actual == expected
    if query_filter.op is FilterOp.NE:
        return actual != expected
    if query_filter.op is FilterOp.LT:
        return actual < expected
    if query_filter.op is FilterOp.LE:
        return actual <= expected
    if query_filter.op is FilterOp.GT:
        return actual > expected
    return actual >= expected


def matches_filters(lobby: Lobby, filters: Iterable[QueryFilter]) -> bool:
    """Check that a lobby satisfies every filter."""
    return all(matches_filter(lobby, query_filter) for query_filter in filters)


def sort_lobbies(lobbies: Iterable[Lobby], order: Iterable[QueryOrder]) -> list[Lobby]:
    """Sort lobbies by an ordering chain, first entry taking precedence."""
    result = list(lobbies)
    for step in reversed(list(order)):
        result.sort(
            key=lambda lobby, step=step: field_value(lobby, step.field),
            reverse=not step.ascending,
        )
    return result


def _coerce(lobby_field: LobbyField, raw: str) -> object:
    if lobby_field in {LobbyField.AVAILABLE_SLOTS, LobbyField.MAX_PLAYERS}:
        return int(raw)
    if lobby_field is LobbyField.CREATED:
        return datetime.fromisoformat(raw)
    return raw
