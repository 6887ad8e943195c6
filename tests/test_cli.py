from __future__ import annotations

import importlib.util
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from worldkeeper.vcs import GitBackend, FakeGitRunner, GitExecutionResult


def load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "keeper_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def result(returncode: int = 0, stdout: str = "") -> GitExecutionResult:
    return GitExecutionResult(args=("git",), returncode=returncode, stdout=stdout, stderr="")


@pytest.fixture(autouse=True)
def server_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("KEEPER_SERVER_DIR", str(tmp_path))
    monkeypatch.delenv("KEEPER_WATCH_FILE", raising=False)
    monkeypatch.delenv("KEEPER_REPO_PATH", raising=False)
    return tmp_path


def test_preflight_reports_missing_upstream(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("keeper_diag_preflight_module")
    runner = FakeGitRunner(
        {"rev-parse": [result(stdout="true\n"), result(returncode=128)]},
        repo_path=tmp_path,
    )
    monkeypatch.setattr(diag, "load_backend", lambda settings: GitBackend(runner))

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["preflight"])

    assert excinfo.value.code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["is_work_tree"] is True
    assert payload["has_remote"] is True
    assert payload["has_upstream"] is False
    assert payload["ready"] is False
    assert payload["problems"]


def test_preflight_ready(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("keeper_diag_ready_module")
    runner = FakeGitRunner(repo_path=tmp_path)
    monkeypatch.setattr(diag, "load_backend", lambda settings: GitBackend(runner))

    diag.main(["preflight"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["ready"] is True
    assert payload["repo_path"] == str(tmp_path)


def test_snapshot_lists_watched_targets(capsys, server_dir: Path) -> None:
    diag = load_diag("keeper_diag_snapshot_module")
    world = server_dir / "world"
    (world / "region").mkdir(parents=True)
    (world / "level.dat").write_bytes(b"x" * 12)
    (world / "region" / "r.0.0.mca").write_bytes(b"y" * 30)

    diag.main(["snapshot"])

    payload = json.loads(capsys.readouterr().out)
    sizes = sorted(entry["size"] for entry in payload)
    assert sizes == [12, 30]


def test_snapshot_rejects_invalid_watch_file(monkeypatch, capsys, server_dir: Path) -> None:
    diag = load_diag("keeper_diag_invalid_watch_module")
    watch_file = server_dir / "watch.yaml"
    watch_file.write_text("files: {unterminated", encoding="utf-8")
    monkeypatch.setenv("KEEPER_WATCH_FILE", str(watch_file))

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["snapshot"])

    assert excinfo.value.code == 2
    assert "Watch-set invalid" in capsys.readouterr().out


def test_lock_without_index_lock(capsys, server_dir: Path) -> None:
    diag = load_diag("keeper_diag_lock_module")
    (server_dir / ".git").mkdir()

    diag.main(["lock"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["exists"] is False
    assert payload["stale"] is False


def test_changes_honours_limit(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = load_diag("keeper_diag_changes_module")
    porcelain = " M world/level.dat\n M world/region/r.0.0.mca\n?? world/stats/new.json\n"
    runner = FakeGitRunner({"status": [result(stdout=porcelain)]}, repo_path=tmp_path)
    monkeypatch.setattr(diag, "load_backend", lambda settings: GitBackend(runner))

    diag.main(["changes", "--limit", "2"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["changed"] == 3
    assert payload["paths"] == ["world/level.dat", "world/region/r.0.0.mca"]


def test_cli_without_command_prints_help(server_dir: Path) -> None:
    script = Path(__file__).resolve().parents[1] / "scripts" / "keeper_diag.py"
    repo_root = script.parents[1]
    env = os.environ.copy()
    env["PYTHONPATH"] = str(repo_root / "src") + os.pathsep + env.get("PYTHONPATH", "")
    process = subprocess.run(
        [sys.executable, str(script)],
        cwd=str(repo_root),
        capture_output=True,
        text=True,
        env=env,
    )
    assert process.returncode == 0
    assert "preflight" in process.stdout
