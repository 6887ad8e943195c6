from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from worldkeeper.vcs.runner import (
    FakeGitRunner,
    GitExecutionResult,
    GitNotFoundError,
    GitRunner,
    GitTimeoutError,
)
from worldkeeper.vcs.utils import sanitize_environment


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return path


def test_git_runner_executes_in_repo(tmp_path: Path) -> None:
    script = write_script(tmp_path / "git", 'pwd\necho "$@"\n')
    repo = tmp_path / "repo"
    repo.mkdir()

    runner = GitRunner(repo, script)
    result = asyncio.run(runner.run("add", "-A"))

    assert result.ok
    lines = result.stdout.splitlines()
    assert Path(lines[0]).resolve() == repo.resolve()
    assert lines[1] == "add -A"


def test_git_runner_reports_failure(tmp_path: Path) -> None:
    script = write_script(tmp_path / "git", 'echo "fatal: not a git repository" >&2\nexit 128\n')

    result = asyncio.run(GitRunner(tmp_path, script).run("status"))

    assert not result.ok
    assert result.returncode == 128
    assert "not a git repository" in result.stderr


def test_git_runner_times_out(tmp_path: Path) -> None:
    script = write_script(tmp_path / "git", "sleep 5\n")
    runner = GitRunner(tmp_path, script, timeout=0.2)

    with pytest.raises(GitTimeoutError):
        asyncio.run(runner.run("push"))


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path, tmp_path / "missing")


def test_fake_git_runner_scripts_per_subcommand() -> None:
    failure = GitExecutionResult(args=("git", "push"), returncode=1, stdout="", stderr="rejected")
    fake = FakeGitRunner({"push": [failure]})

    first = asyncio.run(fake.run("push"))
    second = asyncio.run(fake.run("push"))
    asyncio.run(fake.run("add", "-A"))

    assert not first.ok
    assert second.ok
    assert fake.calls("push") == [("push",), ("push",)]
    assert fake.invocations[-1] == ("add", "-A")


def test_sanitize_environment_strips_repository_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("GIT_INDEX_FILE", "/elsewhere/index")
    env = sanitize_environment()
    assert "GIT_DIR" not in env
    assert "GIT_INDEX_FILE" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"


def test_commands_and_output_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("DEBUG", logger="worldkeeper.vcs.runner")
    fake = FakeGitRunner(
        {
            "push": [
                GitExecutionResult(
                    args=("git", "push"), returncode=0, stdout="  main -> main\n", stderr=""
                )
            ]
        }
    )

    async def scenario():
        await fake.run("add", "-A")
        await fake.run("push")

    asyncio.run(scenario())

    messages = [record.getMessage() for record in caplog.records]
    assert "git add -A" in messages
    assert "git push" in messages
    assert "git push output:\nmain -> main" in messages
    assert "git push succeeded" in messages
    assert not any(message.startswith("git add -A output") for message in messages)
