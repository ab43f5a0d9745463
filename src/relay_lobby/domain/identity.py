"""Domain models for player identity."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PlayerIdentity:
    """Represents a signed-in player."""

    player_id: str
    access_token: str
