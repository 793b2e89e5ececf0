"""
Schema definitions for agent <-> connector <-> tool messages.

These data models serve as the contract between the task loop, the backend adapters and individual
tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
)


class Message(BaseModel):
    """One entry of the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str


class ToolCall(BaseModel):
    """A call that the model wants the agent to execute."""

    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")


class QueryRequest(BaseModel):
    """Provider-agnostic request handed to a connector.  Immutable per call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    system_prompt: str
    user_prompt: str = ""
    history: List[Message] = Field(default_factory=list)
    stream: bool = False
    max_tokens: PositiveInt = 600
    tools: Mapping[str, Any] = Field(default_factory=dict)  # name -> Tool


class QueryResult(BaseModel):
    """Outcome of one ``query_with_tool`` round: plain text, or text plus one tool call."""

    text: str = ""
    tool_call: Optional[ToolCall] = None

    @property
    def tool_use(self) -> bool:
        return self.tool_call is not None


class Usage(BaseModel):
    """Token accounting reported by a backend."""

    input_tokens: int = 0
    output_tokens: int = 0
    price: Optional[float] = None  # USD, only when the model is in the price table


class HistoryLog(BaseModel):
    """A single top-level call, as emitted to the history sink."""

    method: str
    query: str
    answer: str
    timestamp: str


class MemoryEntry(BaseModel):
    """A fact the operator asked the agent to keep in mind across runs."""

    content: str
    timestamp: str
