"""Classify dedicated-server console output into semantic events."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class LogEventKind(str, Enum):
    SERVICE_READY = "service_ready"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"


@dataclass(frozen=True, slots=True)
class LogEvent:
    """A recognised console line."""

    kind: LogEventKind
    player: str | None = None


_PREFIX = r"^\[[^\]]*\] \[[^\]]*/INFO\](?: \[[^\]]*\])?: "

READY_PATTERN = re.compile(
    r"^\[[^\]]*\] \[[^\]]*/INFO\] \[minecraft/DedicatedServer\]: Done \(([\d.]+)s\)!"
)
JOINED_PATTERN = re.compile(_PREFIX + r"(?P<player>[\w.]{1,32}) joined the game$")
LEFT_PATTERN = re.compile(_PREFIX + r"(?P<player>[\w.]{1,32}) left the game$")
LOST_CONNECTION_PATTERN = re.compile(_PREFIX + r"(?P<player>[\w.]{1,32}) lost connection: .*$")

_PATTERNS: tuple[tuple[re.Pattern[str], LogEventKind], ...] = (
    (READY_PATTERN, LogEventKind.SERVICE_READY),
    (JOINED_PATTERN, LogEventKind.PLAYER_JOINED),
    (LEFT_PATTERN, LogEventKind.PLAYER_LEFT),
    (LOST_CONNECTION_PATTERN, LogEventKind.PLAYER_LEFT),
)


def classify(line: str) -> LogEvent | None:
    """Return the event a console line represents, or ``None``.

    Lines are matched against anchored patterns only; a chat message that
    merely contains "joined the game" does not count as a join.
    """

    text = line.rstrip("\r\n")
    for pattern, kind in _PATTERNS:
        match = pattern.match(text)
        if match is None:
            continue
        player = match.groupdict().get("player")
        return LogEvent(kind=kind, player=player)
    return None


__all__ = ["LogEvent", "LogEventKind", "classify"]
