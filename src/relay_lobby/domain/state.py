"""Orchestrator states and user-facing status messages."""

from enum import Enum


class OrchestratorState(Enum):
    """Lifecycle state of the session orchestrator."""

    IDLE = "idle"
    SEARCHING = "searching"
    HOSTING_WAITING_FOR_PLAYERS = "hosting_waiting_for_players"
    HOSTING_IN_SESSION = "hosting_in_session"
    JOINING = "joining"
    JOINED = "joined"

    @property
    def is_hosting(self) -> bool:
        return self in {
            OrchestratorState.HOSTING_WAITING_FOR_PLAYERS,
            OrchestratorState.HOSTING_IN_SESSION,
        }


class StatusMessage:
    """Status strings shown to the player."""

    LOOKING_FOR_MATCH = "Looking for a match..."
    CREATING_MATCH = "Creating a new match..."
    MATCH_FOUND = "Match found!"
    WAITING_FOR_PLAYERS = "Waiting for players..."
    PLAYER_FOUND = "Player found!"
    LOBBY_NOT_FOUND = "Cannot find a lobby"
    CREATE_FAILED = "Could not create a match"
    JOIN_FAILED = "Could not join the lobby"
    REFRESH_FAILED = "Cannot refresh lobbies"
    LEFT_LOBBY = "Left the lobby"
