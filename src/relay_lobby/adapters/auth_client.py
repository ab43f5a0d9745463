"""Anonymous player authentication client."""

import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx

from relay_lobby.domain.errors import AuthenticationError
from relay_lobby.domain.identity import PlayerIdentity


class AuthClient(Protocol):
    """Interface for player sign-in."""

    async def sign_in_anonymously(self) -> PlayerIdentity:
        """Sign in without credentials and return the player identity."""


@dataclass
class HttpxAuthClient(AuthClient):
    """Anonymous sign-in implemented with httpx."""

    base_url: str
    project_id: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str, project_id: str) -> "HttpxAuthClient":
        """Create an auth client with a managed httpx session."""
        return cls(
            base_url=base_url, project_id=project_id, http_client=httpx.AsyncClient()
        )

    async def sign_in_anonymously(self) -> PlayerIdentity:
        """Call the anonymous sign-in endpoint."""
        try:
            response = await self.http_client.post(
                f"{self.base_url}/authentication/anonymous",
                headers={"ProjectId": self.project_id},
                json={},
                timeout=10,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Anonymous sign-in failed: {exc}") from exc
        try:
            payload = response.json()
            return PlayerIdentity(
                player_id=str(payload["userId"]), access_token=str(payload["idToken"])
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError(
                f"Anonymous sign-in returned a malformed payload: {exc!r}"
            ) from exc

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


@dataclass
class LocalAuthClient(AuthClient):
    """Issues a random local identity when no auth service is configured."""

    async def sign_in_anonymously(self) -> PlayerIdentity:
        player_id = uuid.uuid4().hex
        return PlayerIdentity(player_id=player_id, access_token=f"local-{player_id}")
