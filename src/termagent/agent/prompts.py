"""Prompt templates used by the agent for questions, task rounds and the exhaustion summary."""

import getpass
import os
import platform
import socket
from datetime import datetime
from typing import (
    Dict,
    Mapping,
)

TRUNCATED_MARKER = "... [Truncated]"

SYSTEM_PROMPT_HEADER = """\
You are a Unix terminal helper.
You are mainly called from a Unix terminal, and asked about Unix terminal questions.

Current system context:
- Hostname: {hostname}
- User: {user}
- Time: {time}
- Working Directory: {cwd}
- Operating System: {os} ({arch})
- Python: {python}"""

SYSTEM_PROMPT_ASK = """\
{header}

Answer the question concisely.  Prefer a single command or a short snippet over prose, and only
explain when the answer is not obvious from the command itself.  Do not wrap the whole answer in
a code block."""

SYSTEM_PROMPT_TASK = """\
{header}

You solve tasks step by step with the help of tools.  In every round you may call at most one
tool.  Explain briefly why you call it.

Tool usage guidelines:
- Carefully consider whether a tool is necessary before using it.
- Ensure all required parameters are provided and valid.
- If a tool fails, analyze the error message and correct the call in the next round.
- Use `user_clarification` only when the task cannot be solved without more information.
- Once the task is solved, call `final_answer` with the complete answer."""

TASK_PROMPT = """\
Original task: {original_query}

Current progress: {completion}%
Iteration: {iterations} of {max_iterations}

{results}Current thought: {current_thought}

What should I do next to complete this task? Is the task finished? If so, provide the final answer."""

SUMMARY_PROMPT = """\
I've been working on this task: {original_query}

Here's what I've learned and done so far:

{results}
I've reached the maximum number of iterations. Based on the above, provide a comprehensive final \
answer."""


def system_context() -> Dict[str, str]:
    """Collect the host facts injected into every system prompt."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    try:
        cwd = os.getcwd()
    except OSError:
        cwd = "unknown"
    return {
        "hostname": socket.gethostname() or "unknown",
        "user": user,
        "time": datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %Z"),
        "cwd": cwd,
        "os": platform.system() or "unknown",
        "arch": platform.machine() or "unknown",
        "python": platform.python_version(),
    }


def system_prompt_header() -> str:
    return SYSTEM_PROMPT_HEADER.format(**system_context())


def system_prompt_ask(override: str | None = None) -> str:
    return SYSTEM_PROMPT_ASK.format(header=system_prompt_header()) if not override else override


def system_prompt_task(override: str | None = None) -> str:
    return SYSTEM_PROMPT_TASK.format(header=system_prompt_header()) if not override else override


def with_memory(prompt: str, memory: str) -> str:
    """Prepend a rendered memory block to a system prompt."""
    return f"{memory}\n\n{prompt}" if memory else prompt


def truncate(text: str, max_len: int) -> str:
    """Cut *text* to *max_len* characters, marking the cut."""
    if len(text) > max_len:
        return text[:max_len] + TRUNCATED_MARKER
    return text


def build_task_prompt(
    *,
    original_query: str,
    completion: int,
    iterations: int,
    max_iterations: int,
    results: Mapping[str, str],
    current_thought: str,
    truncate_len: int,
) -> str:
    """
    Render the user prompt of one task round.

    Every gathered result is included under its source name, each one truncated to
    *truncate_len* characters.
    """
    blocks = ""
    if results:
        blocks = "Information gathered so far:\n"
        for source, result in results.items():
            blocks += (
                f"Results source: {source}\n<RESULTS>\n{truncate(result, truncate_len)}\n</RESULTS>\n"
            )
        blocks += "\n"

    return TASK_PROMPT.format(
        original_query=original_query,
        completion=completion,
        iterations=iterations,
        max_iterations=max_iterations,
        results=blocks,
        current_thought=current_thought,
    ).strip()


def build_summary_prompt(*, original_query: str, results: Mapping[str, str]) -> str:
    """Render the prompt asking for a best-effort answer once the round budget is spent."""
    lines = "".join(f"- From {source}: {result}\n" for source, result in results.items())
    return SUMMARY_PROMPT.format(original_query=original_query, results=lines)
