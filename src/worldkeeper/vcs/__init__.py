"""git-backed persistence for world backups."""

from .backend import BackendCommandError, GitBackend, PersistenceBackend, PreflightReport
from .lock import LockInspection, clear_stale_lock, inspect_lock
from .runner import (
    FakeGitRunner,
    GitExecutionResult,
    GitNotFoundError,
    GitRunner,
    GitRunnerError,
    GitTimeoutError,
)

__all__ = [
    "BackendCommandError",
    "FakeGitRunner",
    "GitBackend",
    "GitExecutionResult",
    "GitNotFoundError",
    "GitRunner",
    "GitRunnerError",
    "GitTimeoutError",
    "LockInspection",
    "PersistenceBackend",
    "PreflightReport",
    "clear_stale_lock",
    "inspect_lock",
]
