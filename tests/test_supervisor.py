from __future__ import annotations

import asyncio
import io
import os
import sys
import textwrap
from pathlib import Path

import pytest

from worldkeeper.supervisor import ServerNotRunningError, ServerProcess

ECHO_SERVER = textwrap.dedent(
    """
    import sys
    print("[00:00:00] [Server thread/INFO] [minecraft/DedicatedServer]: Done (1.0s)!", flush=True)
    for line in sys.stdin:
        command = line.strip()
        print("got " + command, flush=True)
        if command == "stop":
            sys.exit(3)
    """
)

STUBBORN_SERVER = textwrap.dedent(
    """
    import sys, time
    print("ready", flush=True)
    for line in sys.stdin:
        pass
    time.sleep(30)
    """
)


def write_server(tmp_path: Path, source: str) -> list[str]:
    script = tmp_path / "server.py"
    script.write_text(source, encoding="utf-8")
    return [sys.executable, str(script)]


async def next_line(server: ServerProcess) -> str | None:
    return await asyncio.wait_for(server.lines.get(), timeout=10)


def test_lines_are_forwarded_in_order_and_echoed(tmp_path: Path) -> None:
    echo = io.StringIO()

    async def scenario():
        server = ServerProcess(write_server(tmp_path, ECHO_SERVER), cwd=tmp_path, echo=echo)
        await server.start()
        first = await next_line(server)
        await server.send("say hi")
        await server.send("list")
        second = await next_line(server)
        third = await next_line(server)
        code = await server.stop(timeout=10)
        rest = []
        while (line := await next_line(server)) is not None:
            rest.append(line)
        return first, second, third, rest, code

    first, second, third, rest, code = asyncio.run(scenario())

    assert first.endswith("Done (1.0s)!")
    assert (second, third) == ("got say hi", "got list")
    assert rest == ["got stop"]
    assert code == 3
    assert "got say hi\n" in echo.getvalue()


def test_stop_kills_server_that_ignores_stop(tmp_path: Path) -> None:
    async def scenario():
        server = ServerProcess(write_server(tmp_path, STUBBORN_SERVER), cwd=tmp_path, echo=io.StringIO())
        await server.start()
        assert await next_line(server) == "ready"
        return await server.stop(timeout=0.5)

    assert asyncio.run(scenario()) != 0


def test_send_after_exit_raises(tmp_path: Path) -> None:
    async def scenario():
        server = ServerProcess(write_server(tmp_path, ECHO_SERVER), cwd=tmp_path, echo=io.StringIO())
        await server.start()
        await server.send("stop")
        assert await server.wait() == 3
        await server.send("say too late")

    with pytest.raises(ServerNotRunningError):
        asyncio.run(scenario())


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
def test_server_runs_in_its_own_process_group(tmp_path: Path) -> None:
    async def scenario():
        server = ServerProcess(write_server(tmp_path, ECHO_SERVER), cwd=tmp_path, echo=io.StringIO())
        await server.start()
        try:
            assert await next_line(server) is not None
            return os.getpgid(server.pid)
        finally:
            await server.stop(timeout=10)

    assert asyncio.run(scenario()) != os.getpgrp()
