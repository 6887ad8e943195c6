"""Backup state machine: decides when to snapshot the world and commits it."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from .sessions import SessionTracker
from .stability import StabilityDetector
from .vcs import BackendCommandError, GitRunnerError, PersistenceBackend

logger = logging.getLogger(__name__)

FLUSH_COMMAND = "save-all flush"


class BackupState(str, Enum):
    IDLE = "idle"
    GATING = "gating"
    WAITING_FOR_STABILITY = "waiting_for_stability"
    STAGING = "staging"
    COMMITTING = "committing"
    PUSHING = "pushing"
    FAILED = "failed"


class BackupOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class BackupAttempt:
    """Transient record of one ``backup`` call."""

    reason: str
    started_at: datetime
    outcome: BackupOutcome | None = None
    retry_count: int = 0
    stable: bool | None = None
    committed: bool | None = None
    skip_reason: str | None = None
    error: str | None = None
    finished_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcome": self.outcome.value if self.outcome else None,
            "retry_count": self.retry_count,
            "stable": self.stable,
            "committed": self.committed,
            "skip_reason": self.skip_reason,
            "error": self.error,
        }


class CommandSink(Protocol):
    """Control channel of the supervised server."""

    async def send(self, line: str) -> None:
        ...


def tellraw(text: str, color: str) -> str:
    """Build a ``tellraw`` command broadcasting ``text`` to every player."""

    return "tellraw @a " + json.dumps({"text": text, "color": color}, ensure_ascii=False)


class BackupCoordinator:
    """Runs at most one backup at a time against a persistence backend."""

    def __init__(
        self,
        backend: PersistenceBackend,
        detector: StabilityDetector,
        sessions: SessionTracker,
        *,
        console: CommandSink | None = None,
        stable_duration: float = 10.0,
        idle_wait_max: float = 120.0,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        proceed_when_unstable: bool = True,
        announce: bool = True,
        commit_message_format: str = "%Y/%m/%d %H:%M:%S",
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._backend = backend
        self._detector = detector
        self._sessions = sessions
        self._console = console
        self._stable_duration = stable_duration
        self._idle_wait_max = idle_wait_max
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._proceed_when_unstable = proceed_when_unstable
        self._announce_enabled = announce
        self._commit_message_format = commit_message_format
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or (lambda: datetime.now().astimezone())

        self._service_ready = False
        self._backend_ready = False
        self._in_progress = False
        self._closed = False
        self._state = BackupState.IDLE
        self._done = asyncio.Event()
        self._done.set()
        self._last_success: datetime | None = None
        self._last_attempt: BackupAttempt | None = None

    @property
    def state(self) -> BackupState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def last_success(self) -> datetime | None:
        return self._last_success

    @property
    def last_attempt(self) -> BackupAttempt | None:
        return self._last_attempt

    def attach_console(self, console: CommandSink) -> None:
        self._console = console

    def mark_service_ready(self) -> None:
        if not self._service_ready:
            logger.info("Server reported ready; backups enabled")
        self._service_ready = True

    def mark_backend_ready(self, ready: bool) -> None:
        self._backend_ready = ready

    def status(self) -> dict[str, Any]:
        return {
            "sessions": self._sessions.count,
            "players": self._sessions.players,
            "state": self._state.value,
            "in_progress": self._in_progress,
            "service_ready": self._service_ready,
            "backend_ready": self._backend_ready,
            "last_success": self._last_success.isoformat() if self._last_success else None,
        }

    async def backup(
        self,
        require_sessions_zero: bool = True,
        max_wait_override: float | None = None,
        *,
        reason: str = "scheduled",
    ) -> BackupAttempt:
        """Run one backup unless a precondition makes it pointless.

        Requests arriving while a backup runs are dropped, not queued.
        """

        return await self._backup(require_sessions_zero, max_wait_override, reason=reason, final=False)

    async def final_backup(self, max_wait: float) -> BackupAttempt | None:
        """Make the last backup before shutdown, then refuse further requests.

        A backup that is already running has its stability wait shortened to
        ``max_wait`` and is allowed to finish instead of starting another.
        """

        self.close(max_wait)
        if self._in_progress:
            logger.info("Waiting for the running backup before shutdown", extra={"max_wait": max_wait})
            await self._done.wait()
            return self._last_attempt
        return await self._backup(True, max_wait, reason="shutdown", final=True)

    def close(self, max_wait: float = 0.0) -> None:
        """Refuse new backups and shorten the stability wait of a running one."""

        self._closed = True
        if self._in_progress:
            self._detector.cap(max_wait)

    def _skip_reason(self, final: bool) -> str | None:
        if not self._service_ready:
            return "service not ready"
        if not self._backend_ready:
            return "backend not ready"
        if self._closed and not final:
            return "shutting down"
        if self._in_progress:
            return "backup already in progress"
        return None

    async def _backup(
        self,
        require_sessions_zero: bool,
        max_wait_override: float | None,
        *,
        reason: str,
        final: bool,
    ) -> BackupAttempt:
        attempt = BackupAttempt(reason=reason, started_at=self._clock())

        skip = self._skip_reason(final)
        if skip is not None:
            logger.info("Skipping %s backup: %s", reason, skip)
            attempt.outcome = BackupOutcome.SKIPPED
            attempt.skip_reason = skip
            attempt.finished_at = self._clock()
            return attempt

        self._in_progress = True
        self._done.clear()
        self._detector.clear_cap()
        self._state = BackupState.GATING
        try:
            await self._run(attempt, require_sessions_zero, max_wait_override)
        finally:
            attempt.finished_at = self._clock()
            self._last_attempt = attempt
            self._state = BackupState.IDLE
            self._in_progress = False
            self._done.set()
        return attempt

    async def _run(
        self,
        attempt: BackupAttempt,
        require_sessions_zero: bool,
        max_wait_override: float | None,
    ) -> None:
        logger.info("Starting %s backup", attempt.reason, extra={"sessions": self._sessions.count})
        await self._announce("Backing up the world...", "green")
        await self._send(FLUSH_COMMAND)

        if require_sessions_zero:
            self._state = BackupState.WAITING_FOR_STABILITY
            max_wait = self._idle_wait_max if max_wait_override is None else max_wait_override
            attempt.stable = await self._detector.wait_for_stability(max_wait, self._stable_duration)
            if not attempt.stable:
                if not self._proceed_when_unstable:
                    logger.warning("World files still changing; skipping %s backup", attempt.reason)
                    attempt.outcome = BackupOutcome.SKIPPED
                    attempt.skip_reason = "unstable"
                    return
                logger.warning("World files still changing; backing up anyway (unstable)")

        message = self._clock().strftime(self._commit_message_format)
        last_error: BaseException | None = None

        for number in range(1, self._max_retries + 1):
            attempt.retry_count = number - 1
            try:
                attempt.committed = await self._persist(message)
            except (BackendCommandError, GitRunnerError, OSError) as exc:
                last_error = exc
                self._state = BackupState.FAILED
                self._log_failure(number, exc)
                if number < self._max_retries:
                    delay = self._backoff_base ** number
                    logger.info("Retrying backup in %.0fs", delay, extra={"attempt": number})
                    await self._sleep(delay)
                continue

            attempt.outcome = BackupOutcome.SUCCEEDED
            self._last_success = self._clock()
            logger.info(
                "Backup finished",
                extra={
                    "reason": attempt.reason,
                    "retry_count": attempt.retry_count,
                    "committed": attempt.committed,
                    "stable": attempt.stable,
                },
            )
            await self._announce("World backup complete!", "green")
            return

        attempt.outcome = BackupOutcome.FAILED
        attempt.error = str(last_error)
        logger.error(
            "Backup failed after %d attempts",
            self._max_retries,
            extra={"reason": attempt.reason, "error": attempt.error},
        )
        await self._announce("World backup failed (see server log)", "red")

    async def _persist(self, message: str) -> bool:
        await self._backend.recover_lock()
        self._state = BackupState.STAGING
        await self._backend.stage()
        self._state = BackupState.COMMITTING
        committed = await self._backend.commit(message)
        if not committed:
            logger.info("Nothing changed since the last commit")
        self._state = BackupState.PUSHING
        await self._backend.push()
        return committed

    def _log_failure(self, number: int, exc: BaseException) -> None:
        result = getattr(exc, "result", None)
        logger.warning(
            "Backup attempt %d/%d failed: %s",
            number,
            self._max_retries,
            exc,
            extra={
                "attempt": number,
                "command": " ".join(result.args) if result is not None else None,
                "stdout": result.stdout.strip() if result is not None else None,
                "stderr": result.stderr.strip() if result is not None else None,
            },
        )
        if result is not None:
            for label, output in (("stdout", result.stdout), ("stderr", result.stderr)):
                if output.strip():
                    logger.warning("[%s]\n%s", label, output.strip())

    async def _announce(self, text: str, color: str) -> None:
        if self._announce_enabled:
            await self._send(tellraw(text, color))

    async def _send(self, line: str) -> None:
        if self._console is None:
            return
        try:
            await self._console.send(line)
        except (OSError, RuntimeError) as exc:
            logger.warning("Could not send %r to the server: %s", line, exc)


__all__ = [
    "BackupAttempt",
    "BackupCoordinator",
    "BackupOutcome",
    "BackupState",
    "CommandSink",
    "FLUSH_COMMAND",
    "tellraw",
]
