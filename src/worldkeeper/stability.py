"""Detect when the server has finished flushing world data to disk."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Awaitable, Callable, Protocol

from .watchset import DirectoryAggregate, WatchSet

logger = logging.getLogger(__name__)

MISSING: tuple[int, float] = (-1, -1)

Snapshot = dict[str, tuple[int, float]]


class IdleSource(Protocol):
    def is_idle(self) -> bool:
        ...


def _stat_pair(path: str | os.PathLike[str]) -> tuple[int, float]:
    try:
        stat = os.stat(path)
    except OSError:
        return MISSING
    return (stat.st_size, stat.st_mtime)


def _aggregate_pair(aggregate: DirectoryAggregate) -> tuple[int, float]:
    newest: tuple[int, float] = MISSING
    try:
        entries = os.scandir(aggregate.directory)
    except OSError:
        return MISSING
    with entries:
        for entry in entries:
            if not entry.name.endswith(aggregate.suffix):
                continue
            try:
                stat = entry.stat()
            except OSError:
                continue
            if stat.st_mtime > newest[1]:
                newest = (stat.st_size, stat.st_mtime)
    return newest


def take_snapshot(watch_set: WatchSet) -> Snapshot:
    """Return ``(size, mtime)`` for every watched target."""

    snapshot: Snapshot = {}
    for path in watch_set.files:
        snapshot[str(path)] = _stat_pair(path)
    if watch_set.aggregate is not None:
        snapshot[watch_set.aggregate.key] = _aggregate_pair(watch_set.aggregate)
    return snapshot


class StabilityDetector:
    """Polls the watch-set until it stays unchanged while nobody is online."""

    def __init__(
        self,
        watch_set: WatchSet,
        sessions: IdleSource,
        *,
        poll_interval: float = 1.0,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._watch_set = watch_set
        self._sessions = sessions
        self._poll_interval = poll_interval
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._cap_deadline: float | None = None

    @property
    def watch_set(self) -> WatchSet:
        return self._watch_set

    def snapshot(self) -> Snapshot:
        return take_snapshot(self._watch_set)

    def cap(self, max_wait: float) -> None:
        """End any running wait no later than ``max_wait`` seconds from now."""

        deadline = self._clock() + max_wait
        if self._cap_deadline is None or deadline < self._cap_deadline:
            self._cap_deadline = deadline

    def clear_cap(self) -> None:
        self._cap_deadline = None

    async def wait_for_stability(self, max_wait: float, required_stable: float) -> bool:
        """Return ``True`` once the watch-set is unchanged for ``required_stable`` seconds.

        Any poll that sees an active session restarts the measurement from a
        fresh baseline. Gives up and returns ``False`` after ``max_wait``.
        """

        started = self._clock()
        deadline = started + max_wait
        baseline = self.snapshot()
        last_change = started
        polls = 0

        while True:
            now = self._clock()
            effective_deadline = deadline
            if self._cap_deadline is not None:
                effective_deadline = min(deadline, self._cap_deadline)
            remaining = effective_deadline - now
            if remaining <= 0:
                break

            await self._sleep(min(self._poll_interval, remaining))
            now = self._clock()
            polls += 1

            if not self._sessions.is_idle():
                baseline = self.snapshot()
                last_change = now
                continue

            current = self.snapshot()
            if current == baseline:
                if now - last_change >= required_stable:
                    logger.info(
                        "World files stable for %.1fs",
                        now - last_change,
                        extra={"polls": polls, "waited": now - started},
                    )
                    return True
            else:
                baseline = current
                last_change = now

        logger.warning(
            "World files did not settle within %.1fs",
            self._clock() - started,
            extra={"polls": polls, "required_stable": required_stable},
        )
        return False


__all__ = ["MISSING", "Snapshot", "StabilityDetector", "take_snapshot"]
