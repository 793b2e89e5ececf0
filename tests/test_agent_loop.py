"""Scenario tests for the question path and the task loop, against a scripted connector."""

import asyncio
from typing import (
    Any,
    Dict,
    List,
)

import pytest

from conftest import make_settings
from termagent.agent.agent_loop import (
    HISTORY_WINDOW,
    Agent,
    TaskState,
    TaskStatus,
)
from termagent.connectors.base import BaseConnector
from termagent.core.errors import (
    EmptyQueryError,
    TaskTimeoutError,
    TransportError,
)
from termagent.core.schema import (
    QueryRequest,
    QueryResult,
    ToolCall,
)
from termagent.tools import (
    Tool,
    ToolRegistry,
)


class ScriptedConnector(BaseConnector):
    """Replays one scripted :class:`QueryResult` per tool round; plain text once the script ends."""

    provider = "scripted"

    def __init__(self, replies: List[QueryResult] = (), summary: str = "summary", delay: float = 0):
        super().__init__("stub", make_settings())
        self.replies = list(replies)
        self.summary = summary
        self.delay = delay
        self.tool_requests: List[QueryRequest] = []
        self.queries: List[QueryRequest] = []

    async def query(self, request: QueryRequest) -> str:
        self.queries.append(request)
        if request.tools:
            raise AssertionError("query() must not offer tools")
        if request.system_prompt and request.user_prompt.startswith("I've been working"):
            return self.summary
        return f"echo: {request.user_prompt}"

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.tool_requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.replies:
            return self.replies.pop(0)
        return QueryResult(text=f"still thinking ({len(self.tool_requests)})")


class FailingConnector(ScriptedConnector):
    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.tool_requests.append(request)
        raise TransportError("scripted", "connection reset")


class CountTool(Tool):
    name = "count"
    description = "Count characters."
    input_schema = {
        "type": "object",
        "properties": {"text": {"type": "string", "description": "Text to count"}},
        "required": ["text"],
    }

    async def run(self, args: Dict[str, Any]) -> str:
        return str(len(args["text"]))


class MemorySink:
    def __init__(self) -> None:
        self.records: List[tuple] = []

    def log(self, method: str, query: str, answer: str) -> None:
        self.records.append((method, query, answer))


def call(name: str, justification: str = "", **args: Any) -> QueryResult:
    return QueryResult(text=justification, tool_call=ToolCall(name=name, args=args))


def make_agent(connector: BaseConnector, **settings: Any) -> Agent:
    return Agent(connector, ToolRegistry([CountTool()]), make_settings(**settings))


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("text", ["", "   \n"])
def test_empty_question_makes_no_call(text: str) -> None:
    connector = ScriptedConnector()
    with pytest.raises(EmptyQueryError):
        asyncio.run(make_agent(connector).question(text))
    with pytest.raises(EmptyQueryError):
        asyncio.run(make_agent(connector).task(text))
    assert connector.queries == []
    assert connector.tool_requests == []


def test_question_is_idempotent_and_tool_free() -> None:
    connector = ScriptedConnector()
    agent = make_agent(connector)
    first = asyncio.run(agent.question("how do I list files?"))
    second = asyncio.run(agent.question("how do I list files?"))
    assert first == second == "echo: how do I list files?"
    assert connector.queries[0] == connector.queries[1]
    assert connector.queries[0].max_tokens == 600
    assert "Unix terminal helper" in connector.queries[0].system_prompt


def test_question_uses_prompt_override_and_stream_flag() -> None:
    connector = ScriptedConnector()
    agent = make_agent(connector, SYSTEM_PROMPT_ASK="only answer in haiku")
    asyncio.run(agent.question("why?", stream=True))
    assert connector.queries[0].system_prompt == "only answer in haiku"
    assert connector.queries[0].stream is True


def test_memory_block_prepended_to_both_prompts() -> None:
    connector = ScriptedConnector([call("final_answer", answer="ok")])
    memory = "<memory>\nuse kubectl for kubernetes\n</memory>"
    agent = Agent(
        connector, ToolRegistry(), make_settings(SYSTEM_PROMPT_ASK="base"), memory=memory
    )
    asyncio.run(agent.question("pods?"))
    asyncio.run(agent.task("list pods"))

    assert connector.queries[0].system_prompt == memory + "\n\nbase"
    assert connector.tool_requests[0].system_prompt.startswith(memory + "\n\n")


def test_history_sink_receives_each_top_level_call() -> None:
    sink = MemorySink()
    connector = ScriptedConnector([call("final_answer", answer="done")])
    agent = Agent(connector, ToolRegistry(), make_settings(), history=sink)
    asyncio.run(agent.question("q1"))
    asyncio.run(agent.task("t1"))
    assert sink.records == [("ask", "q1", "echo: q1"), ("task", "t1", "done")]


# ---------------------------------------------------------------------------
# Task loop
# ---------------------------------------------------------------------------
def test_final_answer_ends_task_on_first_round() -> None:
    connector = ScriptedConnector([call("final_answer", "The answer is known.", answer="42")])
    state = asyncio.run(make_agent(connector).run_task("what is six times seven?"))

    assert state.answer == "42"
    assert state.status is TaskStatus.COMPLETED
    assert state.iterations == 1
    assert len(connector.tool_requests) == 1
    assert connector.queries == []


def test_final_answer_on_later_round() -> None:
    connector = ScriptedConnector(
        [QueryResult(text="hmm"), call("count", text="abc"), call("final_answer", answer="3")]
    )
    agent = make_agent(connector)
    assert asyncio.run(agent.task("how long is abc?")) == "3"
    assert len(connector.tool_requests) == 3


def test_unknown_tool_is_recorded_and_loop_continues() -> None:
    connector = ScriptedConnector([call("frobnicate", widget=1), call("final_answer", answer="ok")])
    state = asyncio.run(make_agent(connector).run_task("frobnicate the widget"))

    assert state.iterations == 2
    assert "frobnicate" in state.results["tool_error"]
    assert "is not registered" in state.results["tool_error"]
    assert "widget" in state.results["tool_input"]
    assert "frobnicate" not in state.results
    # the error is visible to the model in round 2
    assert "frobnicate" in connector.tool_requests[1].user_prompt


def test_invalid_arguments_recorded() -> None:
    connector = ScriptedConnector([call("count"), call("final_answer", answer="gave up")])
    state = asyncio.run(make_agent(connector).run_task("count nothing"))
    assert "missing 'text'" in state.results["tool_error"]
    assert state.status is TaskStatus.COMPLETED


def test_tool_success_records_output_and_justification() -> None:
    connector = ScriptedConnector([call("count", "Counting first.", text="hello")])
    state = TaskState(original_query="count hello", max_iterations=2)
    asyncio.run(make_agent(connector).run_task("count hello", state))

    assert state.results["count"] == "5"
    assert state.results["count justification"] == "Counting first."
    second_prompt = connector.tool_requests[1].user_prompt
    assert "Results source: count\n<RESULTS>\n5\n</RESULTS>" in second_prompt
    assert "Iteration: 2 of 2" in second_prompt


def test_budget_exhaustion_issues_one_summary_call() -> None:
    connector = ScriptedConnector(summary="best effort")
    state = asyncio.run(make_agent(connector, MAX_ITERATIONS=3).run_task("an impossible task"))

    assert state.status is TaskStatus.EXHAUSTED
    assert state.answer == "best effort"
    assert state.iterations == 3
    assert len(connector.tool_requests) == 3
    (summary,) = connector.queries
    assert summary.max_tokens == 2 * 600
    assert "an impossible task" in summary.user_prompt
    assert "maximum number of iterations" in summary.user_prompt
    assert state.current_thought == "still thinking (3)"


def test_never_more_rounds_than_budget() -> None:
    connector = ScriptedConnector([call("count", text="x") for _ in range(10)])
    state = asyncio.run(make_agent(connector, MAX_ITERATIONS=4).run_task("keep counting"))
    assert state.iterations == 4
    assert len(connector.tool_requests) == 4
    assert state.status is TaskStatus.EXHAUSTED


def test_catalogue_and_history_window() -> None:
    connector = ScriptedConnector()
    asyncio.run(make_agent(connector, MAX_ITERATIONS=6).run_task("think a lot"))

    offered = connector.tool_requests[0].tools
    assert {"count", "final_answer", "user_clarification"} <= set(offered)
    assert connector.tool_requests[0].history == []
    for request in connector.tool_requests:
        assert len(request.history) <= 2 * HISTORY_WINDOW
    assert connector.tool_requests[-1].history[-1].content == "still thinking (5)"


def test_results_are_truncated_in_prompt() -> None:
    connector = ScriptedConnector([call("count", text="a" * 50)])
    agent = make_agent(connector, MAX_ITERATIONS=2, RESULT_TRUNCATE_LENGTH=4)
    state = asyncio.run(agent.run_task("count"))
    assert state.results["count justification"] == ""
    prompt = connector.tool_requests[1].user_prompt
    assert "<RESULTS>\n50\n</RESULTS>" in prompt

    connector = ScriptedConnector([call("count", "x" * 10, text="a")])
    asyncio.run(make_agent(connector, MAX_ITERATIONS=2, RESULT_TRUNCATE_LENGTH=4).run_task("count"))
    assert "xxxx... [Truncated]" in connector.tool_requests[1].user_prompt


def test_user_clarification_reaches_operator() -> None:
    asked = []

    async def ask_user(question: str) -> str:
        asked.append(question)
        return "the blue one"

    connector = ScriptedConnector(
        [call("user_clarification", question="which widget?"), call("final_answer", answer="blue")]
    )
    agent = Agent(connector, ToolRegistry(), make_settings(), ask_user=ask_user)
    state = asyncio.run(agent.run_task("fix the widget"))
    assert asked == ["which widget?"]
    assert state.results["user_clarification"] == "the blue one"


def test_connector_failure_marks_task_failed() -> None:
    connector = FailingConnector()
    state = TaskState(original_query="anything")
    with pytest.raises(TransportError):
        asyncio.run(make_agent(connector).run_task("anything", state))
    assert state.status is TaskStatus.FAILED
    assert state.iterations == 1


def test_timeout_marks_task_failed() -> None:
    connector = ScriptedConnector(delay=1.0)
    state = TaskState(original_query="slow")
    with pytest.raises(TaskTimeoutError):
        asyncio.run(make_agent(connector, TASK_TIMEOUT=0.05).run_task("slow", state))
    assert state.status is TaskStatus.FAILED
    assert state.answer == ""
