"""Application configuration."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    lobby_service_url: str | None = None
    relay_service_url: str | None = None
    auth_service_url: str | None = None
    project_id: str = "local"
    max_connections: int = Field(default=7, ge=1)
    heartbeat_interval_seconds: float = Field(default=15, ge=1)
    lobby_expiry_seconds: float = Field(default=30, gt=0)
    request_timeout_seconds: float = Field(default=10, gt=0)
    lobby_query_limit: int = Field(default=20, ge=1, le=100)
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def max_players(self) -> int:
        """Lobby capacity: every relay connection plus the host."""
        return self.max_connections + 1

    @property
    def uses_local_services(self) -> bool:
        """Whether the in-process directory and relay should be used."""
        return self.lobby_service_url is None or self.relay_service_url is None


def normalize_base_url(raw: str) -> str:
    """Strip whitespace and trailing slashes from a service URL."""
    return raw.strip().rstrip("/")
