"""Common terminal helpers for the project."""

import asyncio
from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def read_user_line(prompt: str = "> ") -> str:
    """
    Read one line from standard input.

    Returns an empty string if input couldn't be read (e.g., Ctrl+D).
    """
    try:
        return input(prompt).strip()
    except EOFError:
        return ""


async def ask_operator(prompt: str = "> ") -> str:
    """Read a line from the human operator without blocking the event loop."""
    return await asyncio.to_thread(read_user_line, prompt)
