from __future__ import annotations

import asyncio
import io

import pytest

from worldkeeper.console import ConsoleAction, ConsoleCommand, ConsoleReader, parse_command


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("backup\n", ConsoleCommand(ConsoleAction.BACKUP, "backup")),
        ("  status  ", ConsoleCommand(ConsoleAction.STATUS, "status")),
        ("stop", ConsoleCommand(ConsoleAction.STOP, "stop")),
        ("say hello world\n", ConsoleCommand(ConsoleAction.FORWARD, "say hello world")),
        ("whitelist add Steve", ConsoleCommand(ConsoleAction.FORWARD, "whitelist add Steve")),
        ("   \n", ConsoleCommand(ConsoleAction.IGNORE)),
    ],
)
def test_parse_command(line: str, expected: ConsoleCommand) -> None:
    assert parse_command(line) == expected


def test_backup_with_arguments_is_forwarded() -> None:
    assert parse_command("backup now").action is ConsoleAction.FORWARD


def test_console_reader_delivers_lines_then_eof() -> None:
    async def scenario():
        reader = ConsoleReader(io.StringIO("status\nsay hi\n"))
        reader.start()
        lines = []
        while True:
            line = await asyncio.wait_for(reader.lines.get(), timeout=5)
            if line is None:
                return lines
            lines.append(line)

    assert asyncio.run(scenario()) == ["status\n", "say hi\n"]
