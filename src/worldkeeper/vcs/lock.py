"""Recovery of index locks left behind by crashed git commands."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import psutil

logger = logging.getLogger(__name__)

ProcessScan = Callable[[Path], list[int]]


def git_dir(repo_path: Path) -> Path:
    """Return the git directory for a working tree, following ``.git`` files."""

    dot_git = Path(repo_path) / ".git"
    if dot_git.is_file():
        content = dot_git.read_text(encoding="utf-8").strip()
        if content.startswith("gitdir:"):
            target = Path(content.split(":", 1)[1].strip())
            return target if target.is_absolute() else (Path(repo_path) / target).resolve()
    return dot_git


def index_lock_path(repo_path: Path) -> Path:
    return git_dir(repo_path) / "index.lock"


def git_processes_using(repo_path: Path) -> list[int]:
    """Return pids of git processes whose working directory is inside the tree."""

    root = Path(repo_path).resolve()
    pids: list[int] = []
    for proc in psutil.process_iter(["name", "cwd"]):
        try:
            name = (proc.info.get("name") or "").lower()
            cwd = proc.info.get("cwd")
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if not name.startswith("git") or not cwd:
            continue
        try:
            Path(cwd).resolve().relative_to(root)
        except ValueError:
            continue
        pids.append(proc.pid)
    return pids


@dataclass(slots=True)
class LockInspection:
    path: Path
    exists: bool
    age: float | None = None
    holders: list[int] = field(default_factory=list)
    stale: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "exists": self.exists,
            "age": self.age,
            "holders": list(self.holders),
            "stale": self.stale,
        }


def inspect_lock(
    repo_path: Path,
    stale_after: float,
    *,
    now: float | None = None,
    process_scan: ProcessScan | None = None,
) -> LockInspection:
    """Describe the index lock, if any.

    A lock is stale when it is older than ``stale_after`` seconds and no git
    process is working inside the tree.
    """

    path = index_lock_path(repo_path)
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return LockInspection(path=path, exists=False)

    age = (now if now is not None else time.time()) - mtime
    scan = process_scan or git_processes_using
    holders = scan(Path(repo_path))
    return LockInspection(
        path=path,
        exists=True,
        age=age,
        holders=holders,
        stale=age >= stale_after and not holders,
    )


def clear_stale_lock(
    repo_path: Path,
    stale_after: float,
    *,
    now: float | None = None,
    process_scan: ProcessScan | None = None,
) -> LockInspection:
    """Remove the index lock when it is stale; leave it alone otherwise."""

    inspection = inspect_lock(repo_path, stale_after, now=now, process_scan=process_scan)
    if not inspection.exists:
        return inspection

    if not inspection.stale:
        logger.warning(
            "Index lock present but not stale; leaving it in place",
            extra={"lock_path": str(inspection.path), "age": inspection.age, "holders": inspection.holders},
        )
        return inspection

    try:
        os.remove(inspection.path)
    except FileNotFoundError:
        pass
    logger.warning(
        "Removed stale index lock (%.0fs old)",
        inspection.age,
        extra={"lock_path": str(inspection.path)},
    )
    return inspection


__all__ = [
    "LockInspection",
    "clear_stale_lock",
    "git_dir",
    "git_processes_using",
    "index_lock_path",
    "inspect_lock",
]
