"""
terminal-agent entry point.

This file handles startup concerns (arg-parsing, settings, logging) and dispatches to the ``ask``,
``task``, ``tool``, ``history`` and ``memory`` commands.
"""

import argparse
import asyncio
import json
import logging
import os
import re
import sys
from datetime import (
    datetime,
    time,
    timezone,
)
from pathlib import Path

from termagent.agent.agent_loop import Agent
from termagent.agent.tool_executor import execute_tool
from termagent.common import (
    AnsiColors,
    colored_print,
)
from termagent.config import Settings
from termagent.connectors import (
    available_providers,
    create_connector,
)
from termagent.core.errors import (
    AgentError,
    ForbiddenError,
    ToolExecutionError,
)
from termagent.memory.history import HistoryStore
from termagent.memory.store import MemoryStore
from termagent.tools import build_registry
from termagent.tools.mcp import McpServerPool

logger = logging.getLogger(__name__)

SECRET_SETTINGS = {"ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "PERPLEXITY_KEY"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )
    # Client libraries log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def _history(settings: Settings) -> HistoryStore:
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        raise OSError(f"Data directory is not writable: {data_dir}")
    return HistoryStore.in_data_dir(data_dir)


def _memory(args: argparse.Namespace, settings: Settings) -> str:
    if not (settings.MEMORY or args.memory):
        return ""
    return MemoryStore.in_data_dir(settings.DATA_DIR).format_as_prompt()


def parse_when(text: str) -> datetime:
    """
    Parse a ``history`` bound.

    Accepts ``YYYY``, ``YYYY-MM-DD``, ``HH:MM[:SS]`` (today, UTC) and ISO timestamps with an
    optional ``Z`` suffix.  A bare date means midnight.
    """
    text = text.strip()
    try:
        if re.fullmatch(r"\d{4}", text):
            return datetime(int(text), 1, 1, tzinfo=timezone.utc)
        if re.fullmatch(r"\d{2}:\d{2}(:\d{2})?", text):
            today = datetime.now(timezone.utc).date()
            return datetime.combine(today, time.fromisoformat(text), tzinfo=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: '{text}'") from exc


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="terminal-agent", description="LLM assistant for the Unix terminal"
    )
    parser.add_argument(
        "--provider",
        choices=available_providers(),
        type=str.lower,
        default=settings.PROVIDER,
        help="Model provider (default from env: %(default)s)",
    )
    parser.add_argument(
        "--model", default=settings.MODEL, help="Model id (default: the provider's default)"
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ask = commands.add_parser("ask", help="Ask a single question")
    ask.add_argument("--stream", action="store_true", help="Stream the answer as it arrives")
    ask.add_argument("--no-print", action="store_true", help="Do not print the answer")
    ask.add_argument("--log", action="store_true", help="Record the call in the history log")
    ask.add_argument(
        "-M", "--memory", action="store_true", help="Include memory in the system prompt"
    )
    ask.add_argument("words", nargs="+", help="The question")

    task = commands.add_parser("task", help="Solve a task with the help of tools")
    task.add_argument("--log", action="store_true", help="Record the call in the history log")
    task.add_argument(
        "-M", "--memory", action="store_true", help="Include memory in the system prompt"
    )
    task.add_argument("words", nargs="+", help="The task")

    tool = commands.add_parser("tool", help="Inspect or run tools directly")
    tool_commands = tool.add_subparsers(dest="tool_command", required=True)
    tool_commands.add_parser("list", help="List available tools")
    tool_help = tool_commands.add_parser("help", help="Describe one tool")
    tool_help.add_argument("name")
    tool_exec = tool_commands.add_parser("exec", help="Run one tool with JSON arguments")
    tool_exec.add_argument("name")
    tool_exec.add_argument("input", nargs="?", default="{}", help="JSON object of arguments")

    history = commands.add_parser("history", help="Query the history log")
    history.add_argument("--after", type=parse_when, help="Only records at or after this date")
    history.add_argument("--before", type=parse_when, help="Only records at or before this date")

    memory = commands.add_parser("memory", help="Store and list things to remember")
    memory_commands = memory.add_subparsers(dest="memory_command", required=True)
    memory_add = memory_commands.add_parser("add", help="Add an entry, skipping duplicates")
    memory_add.add_argument("words", nargs="+", help="The entry")
    memory_commands.add_parser("list", help="List all entries")

    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
async def _ask(args: argparse.Namespace, settings: Settings) -> int:
    connector = create_connector(settings.PROVIDER, settings.MODEL, settings)
    history = _history(settings) if args.log else None
    agent = Agent(
        connector,
        build_registry(settings),
        settings,
        history=history,
        memory=_memory(args, settings),
    )

    answer = await agent.question(" ".join(args.words), stream=args.stream)
    if args.stream:
        print()
    elif not args.no_print:
        print(answer)
    return 0


async def _task(args: argparse.Namespace, settings: Settings) -> int:
    connector = create_connector(settings.PROVIDER, settings.MODEL, settings)
    history = _history(settings) if args.log else None

    async with McpServerPool.from_file(settings.MCP_FILE_PATH) as pool:
        registry = build_registry(settings, pool.tools)
        agent = Agent(
            connector, registry, settings, history=history, memory=_memory(args, settings)
        )
        answer = await agent.task(" ".join(args.words))

    colored_print(answer, AnsiColors.YELLOW)
    return 0


async def _tool(args: argparse.Namespace, settings: Settings) -> int:
    async with McpServerPool.from_file(settings.MCP_FILE_PATH) as pool:
        registry = build_registry(settings, pool.tools)

        if args.tool_command == "list":
            for name in registry.names():
                print(f"{name}: {registry.get(name).description}")
            return 0

        tool = registry.get(args.name)
        if tool is None:
            colored_print(f"Tool '{args.name}' is not registered.", AnsiColors.RED)
            return 1

        if args.tool_command == "help":
            print(tool.help_text)
            return 0

        try:
            tool_args = json.loads(args.input)
        except json.JSONDecodeError as exc:
            colored_print(f"Tool input is not valid JSON: {exc}", AnsiColors.RED)
            return 1
        try:
            print(await execute_tool(registry, args.name, tool_args))
        except ToolExecutionError as exc:
            colored_print(f"⚠️ {exc}", AnsiColors.RED)
            return 1
        return 0


async def _history_cmd(args: argparse.Namespace, settings: Settings) -> int:
    store = HistoryStore.in_data_dir(settings.DATA_DIR)
    for record in store.query(after=args.after, before=args.before):
        print(record.model_dump_json())
    return 0


async def _memory_cmd(args: argparse.Namespace, settings: Settings) -> int:
    store = MemoryStore.in_data_dir(settings.DATA_DIR)
    if args.memory_command == "add":
        store.add(" ".join(args.words))
        return 0

    entries = store.list()
    if not entries:
        print("No memory entries found.")
    for entry in entries:
        print(f"{entry.timestamp} {entry.content}")
    return 0


_COMMANDS = {
    "ask": _ask,
    "task": _task,
    "tool": _tool,
    "history": _history_cmd,
    "memory": _memory_cmd,
}


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for terminal-agent.

    Builds the settings snapshot, parses the command line, initialises logging and runs the
    selected command.  Errors are reported in one line and turn into a non-zero exit code.
    """
    if argv is None:
        argv = sys.argv[1:]

    settings = Settings()
    args = build_parser(settings).parse_args(argv)

    # Command-line arguments override the environment
    settings.LOG_LEVEL = args.log_level
    settings.PROVIDER = args.provider
    settings.MODEL = args.model

    _init_logging(settings.LOG_LEVEL)
    logger.debug("Settings: %s", settings.model_dump(exclude=SECRET_SETTINGS))

    try:
        code = asyncio.run(_COMMANDS[args.command](args, settings))
    except ForbiddenError as exc:
        colored_print(exc.hint or str(exc), AnsiColors.RED)
        logger.debug("Forbidden: %s", exc)
        code = 1
    except AgentError as exc:
        colored_print(f"Error: {exc}", AnsiColors.RED)
        code = 1
    except (OSError, ValueError) as exc:
        colored_print(f"Error: {exc}", AnsiColors.RED)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
