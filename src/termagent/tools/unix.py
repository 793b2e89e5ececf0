"""Run a guarded Unix command in a ``bash`` subprocess."""

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
)

from termagent.common import (
    AnsiColors,
    ask_operator,
    colored_print,
)
from termagent.config import Settings
from termagent.core.errors import ToolExecutionError
from termagent.tools import (
    Tool,
    register_builtin,
)

# Read-mostly commands the model is allowed to start a command line with.
SUPPORTED_COMMANDS = frozenset(
    {
        "ls", "pwd", "date", "sort", "grep", "awk", "sed", "find",
        "cat", "head", "tail", "wc", "uniq", "cut", "tr", "tee",
        "xargs", "diff", "tar", "gzip", "gunzip", "zip", "unzip",
        "curl", "wget", "ps", "top", "free", "df", "du", "lsblk", "lsof",
        "netstat", "ping", "traceroute", "dig", "host", "nslookup", "ip",
        "journalctl", "dmesg", "uname", "hostname", "uptime", "whoami", "which",
        "echo", "file", "stat", "env",
    }
)  # fmt: skip

Confirm = Callable[[str], Awaitable[bool]]


def validate_command(command: str) -> None:
    """Reject commands that escalate privileges or start with an unsupported program."""
    if "sudo" in command:
        raise ToolExecutionError("unix", "command requires sudo which is not allowed")
    words = command.split()
    if not words or words[0] not in SUPPORTED_COMMANDS:
        raise ToolExecutionError("unix", f"invalid unix command: {command}")


async def confirm_on_terminal(command: str) -> bool:
    colored_print("Execute the following Unix command?", AnsiColors.YELLOW)
    reply = await ask_operator(f" > {command} [y/N]: ")
    return reply.strip().lower() in {"y", "yes"}


@register_builtin("unix")
class UnixTool(Tool):
    """Execute one Unix command and return its combined output."""

    name = "unix"
    description = (
        "Execute a single Unix command in bash and return its output. Use it for file "
        "inspection, directory navigation and system information. Commands needing sudo, and "
        "commands outside a read-mostly allow-list, are refused."
    )
    input_schema: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The Unix command to execute, e.g. 'ls -la ~/projects'.",
            },
        },
        "required": ["command"],
    }

    def __init__(
        self,
        settings: Settings,
        *,
        confirm: Confirm | None = None,
        work_dir: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = settings.COMMAND_TIMEOUT
        if confirm is None and settings.CONFIRM_COMMANDS:
            confirm = confirm_on_terminal
        self.confirm = confirm
        self.work_dir = work_dir
        self.logger = logger or logging.getLogger(__name__)

    async def run(self, args: Dict[str, Any]) -> str:
        command = args["command"].strip()
        validate_command(command)

        if self.confirm is not None and not await self.confirm(command):
            raise ToolExecutionError(self.name, "execution cancelled by user")

        self.logger.info("Executing Unix command: %s", command)
        proc = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            cwd=self.work_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            await _kill(proc)
            raise ToolExecutionError(
                self.name, f"command timed out after {self.timeout:.0f}s: {command}"
            ) from exc
        except asyncio.CancelledError:
            # Cancellation must not leave the child running
            await _kill(proc)
            raise

        output = stdout.decode(errors="replace").strip()
        self.logger.debug("Command '%s' exited with %s", command, proc.returncode)
        if proc.returncode != 0:
            raise ToolExecutionError(
                self.name, f"command exited with status {proc.returncode}: {output}"
            )
        return output


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()
