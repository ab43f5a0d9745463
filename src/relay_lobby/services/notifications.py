"""Observer bus for orchestrator notifications."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

_logger = logging.getLogger(__name__)

StateChangedListener = Callable[[str], None]
MatchFoundListener = Callable[[], None]


@dataclass
class NotificationBus:
    """Ordered subscriber lists for status updates and match-found signals.

    Dispatch walks a snapshot of the subscriber list, so callbacks may
    unsubscribe themselves or others while a notification is delivered.
    """

    _state_listeners: list[StateChangedListener] = field(default_factory=list)
    _match_listeners: list[MatchFoundListener] = field(default_factory=list)

    def subscribe_state_changed(self, listener: StateChangedListener) -> None:
        self._state_listeners.append(listener)

    def unsubscribe_state_changed(self, listener: StateChangedListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def subscribe_match_found(self, listener: MatchFoundListener) -> None:
        self._match_listeners.append(listener)

    def unsubscribe_match_found(self, listener: MatchFoundListener) -> None:
        if listener in self._match_listeners:
            self._match_listeners.remove(listener)

    def publish_state(self, message: str) -> None:
        """Deliver a status message to every state subscriber."""
        for listener in tuple(self._state_listeners):
            if listener not in self._state_listeners:
                continue
            try:
                listener(message)
            except Exception:
                _logger.exception("State listener failed for %r", message)

    def publish_match_found(self) -> None:
        """Signal every match subscriber."""
        for listener in tuple(self._match_listeners):
            if listener not in self._match_listeners:
                continue
            try:
                listener()
            except Exception:
                _logger.exception("Match found listener failed")
