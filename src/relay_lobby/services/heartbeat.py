"""Periodic lobby heartbeat."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from relay_lobby.adapters.lobby_client import LobbyClient

_logger = logging.getLogger(__name__)


@dataclass
class HeartbeatTask:
    """Keeps one hosted lobby alive until stopped.

    A heartbeat is sent as soon as the task starts and then once per
    interval. Failed heartbeats are logged and the loop keeps going.
    """

    lobby_client: LobbyClient
    interval_seconds: float = 15
    sent: int = 0
    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _lobby_id: str | None = None

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("Heartbeat interval must be positive")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def lobby_id(self) -> str | None:
        return self._lobby_id if self.running else None

    def start(self, lobby_id: str) -> None:
        """Start heartbeating `lobby_id` on the running event loop."""
        if self.running:
            raise RuntimeError(f"Heartbeat already running for {self._lobby_id}")
        self._lobby_id = lobby_id
        self.sent = 0
        self._task = asyncio.create_task(
            self._run(lobby_id), name=f"lobby-heartbeat-{lobby_id}"
        )

    async def stop(self) -> None:
        """Cancel the loop and wait until it has exited."""
        task = self._task
        self._task = None
        self._lobby_id = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self, lobby_id: str) -> None:
        while True:
            try:
                await self.lobby_client.send_heartbeat(lobby_id)
                self.sent += 1
                _logger.debug("Lobby heartbeat sent for %s", lobby_id)
            except Exception as exc:
                _logger.warning("Lobby heartbeat failed for %s: %s", lobby_id, exc)
            await asyncio.sleep(self.interval_seconds)
