"""Presentation-side observer of orchestrator notifications."""

from dataclasses import dataclass, field

from relay_lobby.domain.state import StatusMessage
from relay_lobby.services.notifications import NotificationBus


@dataclass
class StatusBoard:
    """Mirrors what a menu screen shows: status text and menu visibility."""

    notifications: NotificationBus
    state_text: str = ""
    menu_visible: bool = True
    matches_found: int = 0
    history: list[str] = field(default_factory=list)
    _subscribed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.open()

    def open(self) -> None:
        """Subscribe to the bus if not already subscribed."""
        if self._subscribed:
            return
        self.notifications.subscribe_state_changed(self.update_state)
        self.notifications.subscribe_match_found(self.match_found)
        self._subscribed = True

    def close(self) -> None:
        """Unsubscribe from the bus."""
        if not self._subscribed:
            return
        self.notifications.unsubscribe_state_changed(self.update_state)
        self.notifications.unsubscribe_match_found(self.match_found)
        self._subscribed = False

    def update_state(self, message: str) -> None:
        self.state_text = message
        self.history.append(message)
        if message == StatusMessage.LEFT_LOBBY:
            self.toggle_menu(main_menu_active=True)

    def match_found(self) -> None:
        self.matches_found += 1
        self.toggle_menu(main_menu_active=False)

    def toggle_menu(self, main_menu_active: bool) -> None:
        self.menu_visible = main_menu_active
