"""Server process lifecycle: spawn, line-buffered output, control channel."""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import Sequence, TextIO

import psutil

logger = logging.getLogger(__name__)

STOP_COMMAND = "stop"


class ServerNotRunningError(RuntimeError):
    """Raised when input is sent to a server that is not running."""


def kill_tree(pid: int, timeout: float = 3.0) -> None:
    """Kill a process and all its children."""

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    children = parent.children(recursive=True)

    # Terminate children first, then parent
    for proc in [*children, parent]:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs([*children, parent], timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


class ServerProcess:
    """Runs the server and exposes its console as a channel of lines.

    Every stdout line is echoed and then put on :attr:`lines` in arrival
    order. The queue is unbounded so a slow consumer never loses output. A
    ``None`` marks the end of the stream.
    """

    def __init__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        echo: TextIO | None = None,
        encoding: str = "utf-8",
        line_limit: int = 2**20,
    ) -> None:
        self._args = list(args)
        self._cwd = cwd
        self._echo = echo if echo is not None else sys.stdout
        self._encoding = encoding
        self._line_limit = line_limit
        self._process: asyncio.subprocess.Process | None = None
        self._pumps: list[asyncio.Task[None]] = []
        self.lines: asyncio.Queue[str | None] = asyncio.Queue()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        logger.info("Starting server", extra={"command": " ".join(self._args), "cwd": str(self._cwd)})
        # own process group: terminal and group signals never reach the server
        if sys.platform == "win32":
            detach = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        else:
            detach = {"start_new_session": True}
        self._process = await asyncio.create_subprocess_exec(
            *self._args,
            cwd=str(self._cwd) if self._cwd is not None else None,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=self._line_limit,
            **detach,
        )
        self._pumps = [
            asyncio.create_task(self._pump_stdout()),
            asyncio.create_task(self._pump_stderr()),
        ]

    async def _read_lines(self, stream: asyncio.StreamReader):
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.warning("Dropped an over-long output line", extra={"limit": self._line_limit})
                continue
            if not raw:
                return
            yield raw.decode(self._encoding, errors="replace").rstrip("\r\n")

    async def _pump_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            async for line in self._read_lines(self._process.stdout):
                self._echo.write(line + "\n")
                self._echo.flush()
                await self.lines.put(line)
        finally:
            await self.lines.put(None)

    async def _pump_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        async for line in self._read_lines(self._process.stderr):
            sys.stderr.write(line + "\n")
            sys.stderr.flush()

    async def send(self, line: str) -> None:
        """Write one line to the server console."""

        if not self.running or self._process is None or self._process.stdin is None:
            raise ServerNotRunningError("server is not running")
        self._process.stdin.write((line + "\n").encode(self._encoding))
        await self._process.stdin.drain()

    async def wait(self) -> int:
        """Wait for exit and for the output pumps to drain; return the exit code."""

        if self._process is None:
            raise ServerNotRunningError("server was never started")
        returncode = await self._process.wait()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)
        logger.info("Server exited", extra={"returncode": returncode})
        return returncode

    async def stop(self, timeout: float = 60.0) -> int:
        """Ask the server to stop, killing it if it does not exit in time."""

        if self._process is None:
            raise ServerNotRunningError("server was never started")
        if self.running:
            try:
                await self.send(STOP_COMMAND)
            except (OSError, ServerNotRunningError) as exc:
                logger.warning("Could not send stop command: %s", exc)
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Server did not stop within %.0fs; killing it", timeout)
            await asyncio.to_thread(kill_tree, self._process.pid)
            return await self._process.wait()


__all__ = ["STOP_COMMAND", "ServerNotRunningError", "ServerProcess", "kill_tree"]
