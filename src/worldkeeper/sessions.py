"""Active session accounting driven by console events."""

from __future__ import annotations

import logging
from typing import Callable

from .classifier import LogEvent, LogEventKind

logger = logging.getLogger(__name__)

IdleListener = Callable[[], None]


class SessionTracker:
    """Counts connected players and reports when the server becomes idle.

    Named players are tracked individually so that the ``lost connection`` and
    ``left the game`` lines the server prints for a single disconnect only
    decrement once. Events without a name fall back to a plain counter.
    """

    def __init__(self) -> None:
        self._players: set[str] = set()
        self._anonymous = 0
        self._departed: set[str] = set()
        self._idle_listeners: list[IdleListener] = []

    @property
    def count(self) -> int:
        return len(self._players) + self._anonymous

    @property
    def players(self) -> list[str]:
        return sorted(self._players)

    def is_idle(self) -> bool:
        return self.count == 0

    def add_idle_listener(self, listener: IdleListener) -> None:
        """Register a callback fired each time the count drops to zero."""

        self._idle_listeners.append(listener)

    def on_join(self, player: str | None = None) -> None:
        if player is not None:
            self._departed.discard(player)
        if player is None:
            self._anonymous += 1
        elif player in self._players:
            logger.debug("Join for player already online", extra={"player": player})
            return
        else:
            self._players.add(player)
        logger.info("Player joined (%d online)", self.count, extra={"player": player})

    def on_leave(self, player: str | None = None) -> None:
        if player is not None and player in self._players:
            self._players.remove(player)
            self._departed.add(player)
        elif player is None and self._anonymous > 0:
            self._anonymous -= 1
        elif player is not None and player in self._departed:
            # second line of the same disconnect
            self._departed.discard(player)
            return
        else:
            logger.warning(
                "Leave event with no matching session; count stays at %d",
                self.count,
                extra={"player": player},
            )
            return

        logger.info("Player left (%d online)", self.count, extra={"player": player})
        if self.count == 0:
            self._notify_idle()

    def handle(self, event: LogEvent) -> None:
        """Apply a classified console event."""

        if event.kind is LogEventKind.PLAYER_JOINED:
            self.on_join(event.player)
        elif event.kind is LogEventKind.PLAYER_LEFT:
            self.on_leave(event.player)

    def _notify_idle(self) -> None:
        logger.info("No players online")
        for listener in list(self._idle_listeners):
            listener()


__all__ = ["IdleListener", "SessionTracker"]
