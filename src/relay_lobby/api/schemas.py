"""Pydantic models for the lobby control API."""

from pydantic import BaseModel, Field

from relay_lobby.domain.lobbies import Lobby


class CreateLobbyRequest(BaseModel):
    """Payload for hosting a new lobby."""

    name: str = Field(max_length=100)


class LobbySummary(BaseModel):
    """Lobby list entry with what is needed to join it."""

    id: str
    name: str
    available_slots: int
    max_players: int
    player_count: int

    @classmethod
    def from_lobby(cls, lobby: Lobby) -> "LobbySummary":
        return cls(
            id=lobby.id,
            name=lobby.name,
            available_slots=lobby.available_slots,
            max_players=lobby.max_players,
            player_count=lobby.player_count,
        )


class LobbyList(BaseModel):
    """Result of a lobby list refresh."""

    lobbies: list[LobbySummary]


class SessionStatus(BaseModel):
    """Current orchestrator state as seen by presentation."""

    state: str
    lobby_id: str | None
    join_code: str | None
    status_text: str
    menu_visible: bool
