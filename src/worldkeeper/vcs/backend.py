"""Persistence backends used by the backup coordinator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .lock import LockInspection, ProcessScan, clear_stale_lock
from .runner import GitExecutionResult, GitRunner, GitRunnerError

logger = logging.getLogger(__name__)

_NOTHING_TO_COMMIT = ("nothing to commit", "nothing added to commit", "no changes added to commit")


class BackendCommandError(RuntimeError):
    """Raised when a persistence command exits unsuccessfully."""

    def __init__(self, message: str, result: GitExecutionResult | None = None) -> None:
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class PreflightReport:
    """Outcome of the startup checks against the working tree."""

    is_work_tree: bool
    has_remote: bool
    has_upstream: bool

    @property
    def ready(self) -> bool:
        return self.is_work_tree and self.has_remote and self.has_upstream

    def problems(self) -> list[str]:
        issues: list[str] = []
        if not self.is_work_tree:
            issues.append("not a git working tree (run `git init`)")
        if not self.has_remote:
            issues.append("no remote configured (run `git remote add origin <url>`)")
        if not self.has_upstream:
            issues.append("no upstream branch (run `git push -u origin <branch>`)")
        return issues


class PersistenceBackend(Protocol):
    """Capabilities the coordinator needs from a backup target."""

    async def preflight(self) -> PreflightReport:
        ...

    async def recover_lock(self) -> LockInspection | None:
        ...

    async def stage(self) -> None:
        ...

    async def commit(self, message: str) -> bool:
        """Commit staged changes; return ``False`` when there was nothing to commit."""
        ...

    async def push(self) -> None:
        ...

    async def query_status(self) -> str:
        ...

    async def check_remote_configured(self) -> bool:
        ...


class GitBackend:
    """Persistence backend that commits the working tree and pushes upstream."""

    def __init__(
        self,
        runner: GitRunner,
        *,
        remote: str = "origin",
        stale_lock_age: float = 600.0,
        process_scan: ProcessScan | None = None,
    ) -> None:
        self._runner = runner
        self._remote = remote
        self._stale_lock_age = stale_lock_age
        self._process_scan = process_scan

    @property
    def repo_path(self) -> Path:
        return self._runner.repo_path

    async def _check(self, *args: str) -> bool:
        try:
            result = await self._runner.run(*args)
        except GitRunnerError as exc:
            logger.warning("git %s could not run: %s", " ".join(args), exc)
            return False
        return result.ok

    async def _require(self, *args: str) -> GitExecutionResult:
        result = await self._runner.run(*args)
        if not result.ok:
            raise BackendCommandError(
                f"git {' '.join(args)} exited with code {result.returncode}",
                result,
            )
        return result

    async def preflight(self) -> PreflightReport:
        is_work_tree = await self._check("rev-parse", "--is-inside-work-tree")
        has_remote = is_work_tree and await self.check_remote_configured()
        has_upstream = is_work_tree and await self._check(
            "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"
        )
        return PreflightReport(
            is_work_tree=is_work_tree,
            has_remote=has_remote,
            has_upstream=has_upstream,
        )

    async def check_remote_configured(self) -> bool:
        return await self._check("remote", "get-url", self._remote)

    async def recover_lock(self) -> LockInspection | None:
        inspection = await asyncio.to_thread(
            clear_stale_lock,
            self.repo_path,
            self._stale_lock_age,
            process_scan=self._process_scan,
        )
        return inspection if inspection.exists else None

    async def stage(self) -> None:
        await self._require("add", "-A")

    async def commit(self, message: str) -> bool:
        staged = await self._runner.run("diff", "--cached", "--quiet")
        if staged.returncode == 0:
            return False

        result = await self._runner.run("commit", "-m", message)
        if result.ok:
            return True
        output = f"{result.stdout}\n{result.stderr}".lower()
        if any(marker in output for marker in _NOTHING_TO_COMMIT):
            return False
        raise BackendCommandError(f"git commit exited with code {result.returncode}", result)

    async def push(self) -> None:
        await self._require("push")

    async def query_status(self) -> str:
        result = await self._require("status", "--porcelain")
        return result.stdout


__all__ = [
    "BackendCommandError",
    "GitBackend",
    "PersistenceBackend",
    "PreflightReport",
]
