"""Runs the server, tracks players and schedules world backups."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Coroutine, Optional, Protocol

from pydantic import ValidationError

from . import __version__
from .classifier import LogEventKind, classify
from .config import KeeperSettings, get_settings
from .console import ConsoleAction, ConsoleReader, parse_command
from .coordinator import BackupCoordinator
from .sessions import SessionTracker
from .stability import StabilityDetector
from .supervisor import ServerNotRunningError, ServerProcess
from .vcs import GitBackend, GitNotFoundError, GitRunner, PersistenceBackend
from .watchset import WatchSetLoadError, load_watch_set

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for worldkeeper."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


class Server(Protocol):
    lines: asyncio.Queue[str | None]

    async def start(self) -> None:
        ...

    async def send(self, line: str) -> None:
        ...

    async def wait(self) -> int:
        ...

    async def stop(self, timeout: float = ...) -> int:
        ...


class Keeper:
    """Ties the server, the console and the backup coordinator together."""

    def __init__(
        self,
        settings: KeeperSettings,
        *,
        server: Server,
        backend: PersistenceBackend,
        sessions: SessionTracker,
        coordinator: BackupCoordinator,
        console: ConsoleReader | None = None,
    ) -> None:
        self._settings = settings
        self._server = server
        self._backend = backend
        self._sessions = sessions
        self._coordinator = coordinator
        self._console = console
        self._tasks: set[asyncio.Task[Any]] = set()
        self._scheduler: asyncio.Task[None] | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._signals: list[int] = []

    @property
    def coordinator(self) -> BackupCoordinator:
        return self._coordinator

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s crashed", task.get_name(), exc_info=exc)

    async def run(self) -> int:
        """Run until the server exits; return its exit code."""

        report = await self._backend.preflight()
        if not report.ready:
            logger.error(
                "Backup repository is not ready: %s",
                "; ".join(report.problems()),
                extra={"repo_path": str(self._settings.repository)},
            )
            return 1
        self._coordinator.mark_backend_ready(True)
        self._sessions.add_idle_listener(self._on_idle)

        await self._server.start()
        self._coordinator.attach_console(self._server)
        self._install_signal_handlers()

        self._spawn(self._consume_output(), "output")
        if self._console is not None:
            self._console.start()
            self._spawn(self._consume_console(), "console")
        self._scheduler = self._spawn(self._schedule(), "scheduler")
        logger.info(
            "Automatic backups every %.0f minutes",
            self._settings.backup_interval / 60,
            extra={"version": __version__},
        )

        try:
            returncode = await self._server.wait()
        finally:
            self._remove_signal_handlers()
            await self._drain()
        return returncode

    async def _drain(self) -> None:
        if self._shutdown_task is not None:
            await asyncio.gather(self._shutdown_task, return_exceptions=True)
        # the server is gone; let running backups commit what is on disk
        self._coordinator.close(max_wait=0)
        for task in list(self._tasks):
            if task.get_name() in {"output", "console", "scheduler"}:
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _on_idle(self) -> None:
        self._spawn(self._coordinator.backup(True, reason="idle"), "backup")

    async def _consume_output(self) -> None:
        while True:
            line = await self._server.lines.get()
            if line is None:
                return
            event = classify(line)
            if event is None:
                continue
            if event.kind is LogEventKind.SERVICE_READY:
                self._coordinator.mark_service_ready()
            else:
                self._sessions.handle(event)

    async def _schedule(self) -> None:
        while True:
            await asyncio.sleep(self._settings.backup_interval)
            self._spawn(self._coordinator.backup(True, reason="scheduled"), "backup")

    async def _consume_console(self) -> None:
        assert self._console is not None
        while True:
            line = await self._console.lines.get()
            if line is None:
                return
            await self.handle_command(line)

    async def handle_command(self, line: str) -> None:
        """Act on one operator console line."""

        command = parse_command(line)
        if command.action is ConsoleAction.BACKUP:
            self._spawn(self._coordinator.backup(False, reason="manual"), "backup")
        elif command.action is ConsoleAction.STATUS:
            status = self._coordinator.status()
            logger.info(
                "%d player(s) online, last backup: %s, state: %s",
                status["sessions"],
                status["last_success"] or "never",
                status["state"],
                extra=status,
            )
        elif command.action is ConsoleAction.STOP:
            self.request_shutdown()
        elif command.action is ConsoleAction.FORWARD:
            try:
                await self._server.send(command.text)
            except (OSError, ServerNotRunningError) as exc:
                logger.warning("Could not forward command: %s", exc)

    def request_shutdown(self) -> None:
        """Make a final backup, then stop the server. Repeated calls are no-ops."""

        if self._shutdown_task is not None:
            logger.info("Shutdown already in progress")
            return
        logger.warning("Shutdown requested; making a final backup before stopping the server")
        self._shutdown_task = self._spawn(self._shutdown(), "shutdown")

    async def _shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel()
        attempt = await self._coordinator.final_backup(self._settings.shutdown_wait)
        if attempt is not None:
            logger.info("Final backup %s", attempt.outcome.value if attempt.outcome else "unknown")
        await self._server.stop(self._settings.stop_timeout)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_received, sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self._signal_received, signum))
            self._signals.append(sig)

    def _signal_received(self, signum: int) -> None:
        logger.warning("Received signal %d", signum)
        if signum == signal.SIGINT:
            # a second Ctrl-C falls through to the default handler
            self._restore_signal(signal.SIGINT)
        self.request_shutdown()

    def _restore_signal(self, sig: int) -> None:
        try:
            asyncio.get_running_loop().remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            pass
        signal.signal(sig, signal.default_int_handler if sig == signal.SIGINT else signal.SIG_DFL)

    def _remove_signal_handlers(self) -> None:
        for sig in self._signals:
            self._restore_signal(sig)
        self._signals.clear()


def create_keeper(
    settings: Optional[KeeperSettings] = None,
    *,
    runner: GitRunner | None = None,
    server: Server | None = None,
    console: ConsoleReader | None = None,
) -> Keeper:
    """Build a :class:`Keeper` with its collaborators from settings."""

    settings = settings or get_settings()

    watch_set = load_watch_set(settings.watch_file, settings.server_dir)
    sessions = SessionTracker()
    detector = StabilityDetector(watch_set, sessions, poll_interval=settings.poll_interval)

    if runner is None:
        runner = GitRunner(
            settings.repository,
            Path(settings.git_executable) if settings.git_executable else None,
            timeout=settings.git_timeout,
        )
    backend = GitBackend(runner, remote=settings.git_remote, stale_lock_age=settings.stale_lock_age)

    if server is None:
        server = ServerProcess(settings.server_command(), cwd=settings.server_dir)

    coordinator = BackupCoordinator(
        backend,
        detector,
        sessions,
        stable_duration=settings.stable_duration,
        idle_wait_max=settings.idle_wait_max,
        max_retries=settings.max_retries,
        proceed_when_unstable=settings.proceed_when_unstable,
        announce=settings.announce,
        commit_message_format=settings.commit_message_format,
    )

    return Keeper(
        settings,
        server=server,
        backend=backend,
        sessions=sessions,
        coordinator=coordinator,
        console=console,
    )


def main() -> None:
    """Entry point for running worldkeeper via CLI."""

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(2)
    configure_logging(settings.log_level)

    try:
        keeper = create_keeper(settings, console=ConsoleReader())
    except WatchSetLoadError as exc:
        logger.error("%s", exc)
        raise SystemExit(2)
    except GitNotFoundError as exc:
        logger.error("%s", exc)
        raise SystemExit(1)

    raise SystemExit(asyncio.run(keeper.run()))


if __name__ == "__main__":
    main()
