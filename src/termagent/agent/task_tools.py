"""Tools that only exist inside a task: asking the operator, and ending the task."""

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
from termagent.tools import Tool

AskUser = Callable[[str], Awaitable[str]]

FINAL_ANSWER = "final_answer"
USER_CLARIFICATION = "user_clarification"


class ClarificationTool(Tool):
    """Ask the human operator a question and return their reply."""

    name = USER_CLARIFICATION
    description = "Ask the user for clarification or additional information."
    input_schema = {
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": (
                    "Ask a question to the user to get more info required to solve or clarify "
                    "their problem"
                ),
            },
        },
        "required": ["question"],
    }

    def __init__(self, ask_user: AskUser | None = None) -> None:
        self.ask_user = ask_user

    async def run(self, args: Dict[str, Any]) -> str:
        question = args["question"]
        if self.ask_user is not None:
            return await self.ask_user(question)
        colored_print(f"\nNeed clarification: {question}", AnsiColors.YELLOW)
        return await ask_operator("> ")


class FinalAnswerTool(Tool):
    """Ends the task; its argument is the task's answer."""

    name = FINAL_ANSWER
    description = "Provide the final answer to the task."
    input_schema = {
        "type": "object",
        "properties": {
            "answer": {
                "type": "string",
                "description": (
                    "Call this tool when the task is complete and you want to provide the final "
                    "answer."
                ),
            },
        },
        "required": ["answer"],
    }

    async def run(self, args: Dict[str, Any]) -> str:
        return args["answer"]
