"""Operator console: reads commands from stdin and routes them."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

logger = logging.getLogger(__name__)


class ConsoleAction(str, Enum):
    BACKUP = "backup"
    STATUS = "status"
    STOP = "stop"
    FORWARD = "forward"
    IGNORE = "ignore"


@dataclass(frozen=True, slots=True)
class ConsoleCommand:
    action: ConsoleAction
    text: str = ""


_BUILTINS = {
    "backup": ConsoleAction.BACKUP,
    "status": ConsoleAction.STATUS,
    "stop": ConsoleAction.STOP,
}


def parse_command(line: str) -> ConsoleCommand:
    """Map an operator line to an action.

    ``backup``, ``status`` and ``stop`` are handled locally; anything else is
    passed to the server console as typed.
    """

    text = line.strip()
    if not text:
        return ConsoleCommand(ConsoleAction.IGNORE)
    action = _BUILTINS.get(text)
    if action is not None:
        return ConsoleCommand(action, text)
    return ConsoleCommand(ConsoleAction.FORWARD, text)


class ConsoleReader:
    """Feeds lines from a blocking stream into an asyncio queue.

    A daemon thread does the blocking reads so that a pending ``readline``
    never keeps the process alive at exit. ``None`` is queued at end of input.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self.lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._thread: threading.Thread | None = None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._read_forever,
            args=(loop,),
            name="worldkeeper-console",
            daemon=True,
        )
        self._thread.start()
        logger.info('Console ready: "backup" backs up now, "status" reports, "stop" shuts down')

    def _read_forever(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            for line in self._stream:
                loop.call_soon_threadsafe(self.lines.put_nowait, line)
        except (OSError, ValueError) as exc:
            logger.debug("Console input closed: %s", exc)
        except RuntimeError:
            # event loop already closed
            return
        try:
            loop.call_soon_threadsafe(self.lines.put_nowait, None)
        except RuntimeError:
            pass


__all__ = ["ConsoleAction", "ConsoleCommand", "ConsoleReader", "parse_command"]
