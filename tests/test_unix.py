"""Tests for the guarded Unix command tool."""

import asyncio
from pathlib import Path

import pytest

from termagent.config import Settings
from termagent.core.errors import ToolExecutionError
from termagent.tools.unix import (
    UnixTool,
    confirm_on_terminal,
    validate_command,
)


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, CONFIRM_COMMANDS=False, **overrides)


async def _yes(command: str) -> bool:
    return True


async def _no(command: str) -> bool:
    return False


def test_validate_command_rejects_sudo() -> None:
    with pytest.raises(ToolExecutionError, match="sudo which is not allowed"):
        validate_command("sudo ls /root")


@pytest.mark.parametrize("command", ["rm -rf /tmp/x", "python -c 'print(1)'", ""])
def test_validate_command_rejects_unsupported(command: str) -> None:
    with pytest.raises(ToolExecutionError, match="invalid unix command"):
        validate_command(command)


def test_validate_command_accepts_allow_listed() -> None:
    validate_command("ls -la | grep foo")


def test_run_returns_trimmed_output(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("hello\n", encoding="utf-8")
    tool = UnixTool(_settings(), work_dir=str(tmp_path))
    assert asyncio.run(tool({"command": "cat notes.txt"})) == "hello"


def test_run_combines_stderr_and_reports_exit_status(tmp_path: Path) -> None:
    tool = UnixTool(_settings(), work_dir=str(tmp_path))
    with pytest.raises(ToolExecutionError, match="exited with status") as info:
        asyncio.run(tool({"command": "ls does-not-exist"}))
    assert "does-not-exist" in str(info.value)


def test_run_asks_for_confirmation() -> None:
    asked = []

    async def confirm(command: str) -> bool:
        asked.append(command)
        return False

    tool = UnixTool(_settings(), confirm=confirm)
    with pytest.raises(ToolExecutionError, match="execution cancelled by user"):
        asyncio.run(tool({"command": "echo hi"}))
    assert asked == ["echo hi"]

    assert asyncio.run(UnixTool(_settings(), confirm=_yes)({"command": "echo hi"})) == "hi"


def test_confirmation_defaults_to_terminal_when_enabled() -> None:
    tool = UnixTool(Settings(_env_file=None, CONFIRM_COMMANDS=True))
    assert tool.confirm is confirm_on_terminal
    assert UnixTool(_settings()).confirm is None


def test_run_times_out() -> None:
    tool = UnixTool(_settings(COMMAND_TIMEOUT=0.2))
    with pytest.raises(ToolExecutionError, match="timed out"):
        asyncio.run(tool({"command": "tail -f /dev/null"}))


def test_cancellation_propagates() -> None:
    tool = UnixTool(_settings())

    async def scenario() -> None:
        job = asyncio.create_task(tool({"command": "tail -f /dev/null"}))
        await asyncio.sleep(0.2)
        job.cancel()
        await job

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(scenario())


def test_rejected_command_never_asks() -> None:
    tool = UnixTool(_settings(), confirm=_no)
    with pytest.raises(ToolExecutionError, match="invalid unix command"):
        asyncio.run(tool({"command": "shutdown now"}))
