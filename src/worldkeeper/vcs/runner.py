"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from .utils import sanitize_environment

logger = logging.getLogger(__name__)


class GitRunnerError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitRunnerError):
    """Raised when the git executable cannot be located."""


class GitTimeoutError(GitRunnerError):
    """Raised when a git command does not finish within its timeout."""


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Execute git commands asynchronously inside one working tree."""

    def __init__(
        self,
        repo_path: Path,
        executable: Path | None = None,
        *,
        timeout: float | None = 300.0,
    ) -> None:
        self._repo_path = Path(repo_path)
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    async def run(self, *args: str) -> GitExecutionResult:
        command = " ".join(args)
        logger.info("git %s", command, extra={"repo_path": str(self._repo_path)})
        result = await self._invoke(*args)
        if result.ok:
            output = result.stdout.strip()
            if output:
                logger.debug("git %s output:\n%s", command, output)
            logger.debug("git %s succeeded", command)
        return result

    async def _invoke(self, *args: str) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self._repo_path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise GitTimeoutError(
                f"git {' '.join(args)} did not finish within {self._timeout}s"
            ) from exc
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that simulates git responses.

    ``responses`` maps a git subcommand (``"add"``, ``"commit"``...) to the
    results returned for successive calls of that subcommand. Exceptions in
    the queue are raised instead of returned. Unscripted calls succeed with
    empty output.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Mapping[str, Iterable[GitExecutionResult | BaseException]] | None = None,
        repo_path: Path | None = None,
    ) -> None:
        self._responses = {key: list(value) for key, value in (responses or {}).items()}
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-git")
        self._repo_path = Path(repo_path) if repo_path is not None else Path("/tmp/fake-repo")
        self._timeout = None

    async def _invoke(self, *args: str) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        queue = self._responses.get(args[0]) if args else None
        if queue:
            response = queue.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return GitExecutionResult(args=("git", *args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    def calls(self, subcommand: str) -> list[tuple[str, ...]]:
        return [call for call in self._invocations if call and call[0] == subcommand]

