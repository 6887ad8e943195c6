"""worldkeeper diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from worldkeeper.config import KeeperSettings
from worldkeeper.stability import take_snapshot
from worldkeeper.vcs import GitBackend, GitNotFoundError, GitRunner, inspect_lock
from worldkeeper.watchset import WatchSetLoadError, load_watch_set


def load_backend(settings: KeeperSettings) -> GitBackend:
    try:
        runner = GitRunner(
            settings.repository,
            Path(settings.git_executable) if settings.git_executable else None,
            timeout=settings.git_timeout,
        )
    except GitNotFoundError as exc:
        print(f"git unavailable: {exc}")
        raise SystemExit(1)
    return GitBackend(runner, remote=settings.git_remote, stale_lock_age=settings.stale_lock_age)


def cmd_preflight(args: argparse.Namespace) -> None:
    settings = KeeperSettings()
    backend = load_backend(settings)
    report = asyncio.run(backend.preflight())
    payload = {
        "repo_path": str(settings.repository),
        "is_work_tree": report.is_work_tree,
        "has_remote": report.has_remote,
        "has_upstream": report.has_upstream,
        "ready": report.ready,
        "problems": report.problems(),
    }
    print(json.dumps(payload, indent=2))
    if not report.ready:
        raise SystemExit(1)


def cmd_snapshot(args: argparse.Namespace) -> None:
    settings = KeeperSettings()
    try:
        watch_set = load_watch_set(settings.watch_file, settings.server_dir)
    except WatchSetLoadError as exc:
        print(f"Watch-set invalid: {exc}")
        raise SystemExit(2)
    snapshot = take_snapshot(watch_set)
    payload = [
        {"target": key, "size": size, "mtime": mtime}
        for key, (size, mtime) in snapshot.items()
    ]
    print(json.dumps(payload, indent=2))


def cmd_lock(args: argparse.Namespace) -> None:
    settings = KeeperSettings()
    inspection = inspect_lock(settings.repository, settings.stale_lock_age)
    print(json.dumps(inspection.as_dict(), indent=2))


def cmd_changes(args: argparse.Namespace) -> None:
    settings = KeeperSettings()
    backend = load_backend(settings)
    status = asyncio.run(backend.query_status())
    changed = [line for line in status.splitlines() if line.strip()]
    total = len(changed)
    if args.limit is not None and args.limit > 0:
        changed = changed[: args.limit]
    print(json.dumps({"changed": total, "paths": [line[3:] for line in changed]}, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="worldkeeper diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_preflight = sub.add_parser("preflight", help="Check the backup repository setup")
    p_preflight.set_defaults(func=cmd_preflight)

    p_snapshot = sub.add_parser("snapshot", help="Show size and mtime of watched world files")
    p_snapshot.set_defaults(func=cmd_snapshot)

    p_lock = sub.add_parser("lock", help="Inspect the git index lock")
    p_lock.set_defaults(func=cmd_lock)

    p_changes = sub.add_parser("changes", help="List paths a backup would commit")
    p_changes.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the first N paths",
    )
    p_changes.set_defaults(func=cmd_changes)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
