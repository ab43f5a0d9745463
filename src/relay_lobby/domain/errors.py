"""Error taxonomy for lobby orchestration."""

from enum import Enum


class LobbyError(Exception):
    """Base class for every error raised by the lobby layer."""


class DirectoryErrorReason(Enum):
    """Why a lobby directory call failed."""

    NOT_FOUND = "not_found"
    FULL = "full"
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class DirectoryServiceError(LobbyError):
    """A lobby directory operation failed."""

    def __init__(self, reason: DirectoryErrorReason, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class RelayErrorReason(Enum):
    """Why a relay service call failed."""

    INVALID_CODE = "invalid_code"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RelayServiceError(LobbyError):
    """A relay allocation or join-code operation failed."""

    def __init__(self, reason: RelayErrorReason, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class TransportError(LobbyError):
    """The network transport could not be configured or started."""


class AuthenticationError(LobbyError):
    """Anonymous sign-in failed."""


class LobbyValidationError(LobbyError):
    """Input supplied by presentation code was rejected before any call."""


class LobbyStateError(LobbyError):
    """An action is not allowed in the current orchestrator state."""
