"""Tests for lobby filters and ordering."""

from datetime import UTC, datetime, timedelta

from relay_lobby.domain.lobbies import (
    JOIN_CODE_KEY,
    LOBBY_LIST_ORDER,
    OPEN_SLOTS_FILTER,
    DataObject,
    FilterOp,
    Lobby,
    LobbyField,
    QueryFilter,
    matches_filters,
    sort_lobbies,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def _lobby(name: str, slots: int, minutes: int, max_players: int = 8) -> Lobby:
    return Lobby(
        id=name.lower(),
        name=name,
        max_players=max_players,
        available_slots=slots,
        is_private=False,
        created=BASE_TIME + timedelta(minutes=minutes),
    )


def test_lobby_list_order_prefers_fewest_slots_then_newest() -> None:
    lobbies = [_lobby("B", 3, 1), _lobby("A", 1, 2), _lobby("C", 1, 3)]

    ordered = sort_lobbies(lobbies, LOBBY_LIST_ORDER)

    assert [lobby.name for lobby in ordered] == ["C", "A", "B"]


def test_name_breaks_ties_descending() -> None:
    lobbies = [_lobby("Alpha", 2, 0), _lobby("Beta", 2, 0)]

    ordered = sort_lobbies(lobbies, LOBBY_LIST_ORDER)

    assert [lobby.name for lobby in ordered] == ["Beta", "Alpha"]


def test_open_slots_filter_excludes_full_lobbies() -> None:
    assert matches_filters(_lobby("Open", 1, 0), [OPEN_SLOTS_FILTER])
    assert not matches_filters(_lobby("Full", 0, 0), [OPEN_SLOTS_FILTER])


def test_filters_combine_with_and() -> None:
    filters = [
        OPEN_SLOTS_FILTER,
        QueryFilter(LobbyField.MAX_PLAYERS, FilterOp.LE, "4"),
        QueryFilter(LobbyField.NAME, FilterOp.NE, "Hidden"),
    ]

    assert matches_filters(_lobby("Small", 2, 0, max_players=4), filters)
    assert not matches_filters(_lobby("Large", 2, 0, max_players=8), filters)
    assert not matches_filters(_lobby("Hidden", 2, 0, max_players=4), filters)


def test_created_filter_compares_timestamps() -> None:
    cutoff = QueryFilter(
        LobbyField.CREATED, FilterOp.GE, (BASE_TIME + timedelta(minutes=5)).isoformat()
    )

    assert matches_filters(_lobby("New", 1, 10), [cutoff])
    assert not matches_filters(_lobby("Old", 1, 1), [cutoff])


def test_join_code_reads_metadata() -> None:
    lobby = Lobby(
        id="x",
        name="X",
        max_players=2,
        available_slots=1,
        is_private=False,
        created=BASE_TIME,
        data={JOIN_CODE_KEY: DataObject("ABC123")},
    )

    assert lobby.join_code == "ABC123"
    assert _lobby("Bare", 1, 0).join_code is None
