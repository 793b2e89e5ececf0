"""
Main orchestration loop for the terminal agent.

:class:`Agent` answers single questions and runs multi-round tasks.  A task round renders the
current :class:`TaskState` into a prompt, asks the connector for the next step, executes at most
one tool and folds its output back into the state, until the model calls ``final_answer`` or the
round budget is spent.
"""

import asyncio
import logging
from enum import Enum
from typing import (
    Dict,
    List,
    Protocol,
)

from pydantic import (
    BaseModel,
    Field,
)

from termagent.agent.prompts import (
    build_summary_prompt,
    build_task_prompt,
    system_prompt_ask,
    system_prompt_task,
    with_memory,
)
from termagent.agent.task_tools import (
    FINAL_ANSWER,
    AskUser,
    ClarificationTool,
    FinalAnswerTool,
)
from termagent.agent.tool_executor import execute_tool
from termagent.config import Settings
from termagent.connectors.base import BaseConnector
from termagent.core.errors import (
    EmptyQueryError,
    TaskTimeoutError,
    ToolExecutionError,
)
from termagent.core.schema import (
    Message,
    QueryRequest,
    QueryResult,
    ToolCall,
)
from termagent.tools import ToolRegistry

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 3
"""Number of past rounds (user/assistant pairs) sent along with each task round."""

COMPLETION_AFTER_ROUND = 85
COMPLETION_AFTER_TOOL = 90


class HistorySink(Protocol):
    def log(self, method: str, query: str, answer: str) -> object: ...


# ---------------------------------------------------------------------------
# Task state
# ---------------------------------------------------------------------------
class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class TaskState(BaseModel):
    """Everything one task execution knows.  Never shared between tasks."""

    original_query: str
    iterations: int = 0
    max_iterations: int = 10
    completion: int = Field(0, description="Advisory progress estimate, 0-100")
    results: Dict[str, str] = Field(default_factory=dict)
    current_thought: str = "I'll solve this task step by step."
    history: List[Message] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.RUNNING
    answer: str = ""


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------
class Agent:
    """
    Provider-agnostic question answering and task loop.

    Parameters
    ----------
    connector:
        The backend adapter every model round goes through.
    registry:
        Tools available to tasks.  ``user_clarification`` and ``final_answer`` are added on top.
    settings:
        Run-time snapshot (token budget, round budget, deadline, prompt overrides).
    logger:
        Logger to use instead of the module logger.
    history:
        Optional sink receiving one record per top-level call.
    ask_user:
        Coroutine used by ``user_clarification`` to reach the operator; defaults to the terminal.
    memory:
        Rendered ``<memory>`` block prepended to both system prompts, if any.
    """

    def __init__(
        self,
        connector: BaseConnector,
        registry: ToolRegistry,
        settings: Settings,
        *,
        logger: logging.Logger | None = None,  # pylint: disable=redefined-outer-name
        history: HistorySink | None = None,
        ask_user: AskUser | None = None,
        memory: str = "",
    ) -> None:
        self.connector = connector
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.history = history

        self.tools = ToolRegistry(registry.all().values())
        self.tools.register(ClarificationTool(ask_user))
        self.tools.register(FinalAnswerTool())

        self.system_prompt_ask = with_memory(system_prompt_ask(settings.SYSTEM_PROMPT_ASK), memory)
        self.system_prompt_task = with_memory(
            system_prompt_task(settings.SYSTEM_PROMPT_TASK), memory
        )

    # ------------------------------------------------------------------
    # Single question
    # ------------------------------------------------------------------
    async def question(self, text: str, stream: bool = False) -> str:
        """Answer *text* in one model call, without tools."""
        if not text or not text.strip():
            raise EmptyQueryError()

        request = QueryRequest(
            system_prompt=self.system_prompt_ask,
            user_prompt=text,
            stream=stream,
            max_tokens=self.settings.MAX_TOKENS,
        )
        answer = await self.connector.query(request)
        self._record("ask", text, answer)
        return answer

    # ------------------------------------------------------------------
    # Task
    # ------------------------------------------------------------------
    async def task(self, text: str) -> str:
        """Run a task and return its answer."""
        state = await self.run_task(text)
        return state.answer

    async def run_task(self, text: str, state: TaskState | None = None) -> TaskState:
        """
        Run the task loop for *text* and return the final state.

        A caller-provided *state* is updated in place, so its status can be inspected even when
        this raises.

        Raises
        ------
        EmptyQueryError
            If *text* is blank.  No model call is made.
        TaskTimeoutError
            If the task runs past ``TASK_TIMEOUT``; the status is ``FAILED``.
        ConnectorError
            If any model round fails; the status is ``FAILED``.
        """
        if not text or not text.strip():
            raise EmptyQueryError()

        if state is None:
            state = TaskState(original_query=text, max_iterations=self.settings.MAX_ITERATIONS)

        try:
            await asyncio.wait_for(self._run(state), self.settings.TASK_TIMEOUT)
        except asyncio.TimeoutError as exc:
            state.status = TaskStatus.FAILED
            self.logger.error(
                "Task timed out after %.1fs at iteration %d",
                self.settings.TASK_TIMEOUT,
                state.iterations,
            )
            raise TaskTimeoutError(
                f"Task did not finish within {self.settings.TASK_TIMEOUT:g} seconds"
            ) from exc

        self._record("task", text, state.answer)
        return state

    async def _run(self, state: TaskState) -> None:
        try:
            while state.status is TaskStatus.RUNNING and state.iterations < state.max_iterations:
                await self._round(state)

            if state.status is TaskStatus.RUNNING:
                state.status = TaskStatus.EXHAUSTED
                self.logger.info("Round budget of %d spent, summarising", state.max_iterations)
                state.answer = await self._summarize(state)
        except Exception:
            state.status = TaskStatus.FAILED
            raise

    async def _round(self, state: TaskState) -> None:
        state.iterations += 1
        prompt = build_task_prompt(
            original_query=state.original_query,
            completion=state.completion,
            iterations=state.iterations,
            max_iterations=state.max_iterations,
            results=state.results,
            current_thought=state.current_thought,
            truncate_len=self.settings.RESULT_TRUNCATE_LENGTH,
        )
        request = QueryRequest(
            system_prompt=self.system_prompt_task,
            user_prompt=prompt,
            history=state.history[-2 * HISTORY_WINDOW :],
            max_tokens=self.settings.MAX_TOKENS,
            tools=self.tools.all(),
        )

        try:
            response = await self.connector.query_with_tool(request)
        except Exception as exc:
            self.logger.error("Error querying model at iteration %d: %s", state.iterations, exc)
            raise
        state.completion = min(state.completion + 5, COMPLETION_AFTER_ROUND)

        if response.tool_call is not None:
            await self._use_tool(state, response.tool_call, response.text)
        else:
            state.current_thought = response.text
        self._remember(state, response)

        self.logger.debug(
            "Task iteration complete iteration=%d completion=%d%%",
            state.iterations,
            state.completion,
        )

    async def _use_tool(self, state: TaskState, call: ToolCall, justification: str) -> None:
        self.logger.info("Iteration %d calls tool '%s'", state.iterations, call.name)
        try:
            output = await execute_tool(self.tools, call.name, call.args)
        except ToolExecutionError as exc:
            self.logger.error("Tool execution failed tool=%s error=%s", call.name, exc)
            state.results["tool_error"] = f"Failed to execute {call.name}: {exc}"
            state.results["tool_input"] = f"Provided tool arguments: {call.args}"
            return

        state.results[f"{call.name} justification"] = justification
        state.results[call.name] = output
        state.completion = min(state.completion + 5, COMPLETION_AFTER_TOOL)
        state.current_thought = ""

        if call.name == FINAL_ANSWER:
            state.completion = 100
            state.status = TaskStatus.COMPLETED
            state.answer = output

    def _remember(self, state: TaskState, response: QueryResult) -> None:
        reply = response.text
        if response.tool_call is not None:
            reply = f"{reply}\n(called tool '{response.tool_call.name}')".strip()
        state.history.append(
            Message(role="user", content=f"Iteration {state.iterations}: what is the next step?")
        )
        state.history.append(Message(role="assistant", content=reply or "(no answer)"))
        del state.history[: -2 * HISTORY_WINDOW]

    async def _summarize(self, state: TaskState) -> str:
        request = QueryRequest(
            system_prompt=self.system_prompt_task,
            user_prompt=build_summary_prompt(
                original_query=state.original_query, results=state.results
            ),
            max_tokens=self.settings.MAX_TOKENS * 2,
        )
        return await self.connector.query(request)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def _record(self, method: str, query: str, answer: str) -> None:
        if self.history is None:
            return
        self.history.log(method, query, answer)
