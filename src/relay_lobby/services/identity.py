"""Player sign-in state."""

import logging
from dataclasses import dataclass

from relay_lobby.adapters.auth_client import AuthClient
from relay_lobby.domain.identity import PlayerIdentity

_logger = logging.getLogger(__name__)


@dataclass
class IdentityService:
    """Signs the player in once and hands out the cached identity."""

    auth_client: AuthClient
    identity: PlayerIdentity | None = None

    async def ensure_signed_in(self) -> PlayerIdentity:
        """Sign in anonymously unless already signed in."""
        if self.identity is None:
            self.identity = await self.auth_client.sign_in_anonymously()
            _logger.info("Signed in as player %s", self.identity.player_id)
        return self.identity

    def sign_out(self) -> None:
        if self.identity is not None:
            _logger.info("Player %s signed out", self.identity.player_id)
        self.identity = None

    def player_id(self) -> str | None:
        return self.identity.player_id if self.identity else None

    def access_token(self) -> str | None:
        return self.identity.access_token if self.identity else None
