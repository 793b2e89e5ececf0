"""
Error taxonomy for the terminal agent.

Connector errors abort the current question or task.  Tool errors raised inside the task loop are
caught by the loop and recorded into the task state so the model can correct itself on the next
round.
"""


class AgentError(RuntimeError):
    """Base class for every error raised by the agent core."""


class EmptyQueryError(AgentError):
    """Raised when a question or task is blank."""

    def __init__(self) -> None:
        super().__init__("Query is empty")


class UnknownProviderError(AgentError):
    """Raised when a connector is requested for a provider nobody registered."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not supported.")
        self.provider = provider


class TaskTimeoutError(AgentError):
    """Raised when a task runs past its deadline."""


# ---------------------------------------------------------------------------
# Connector errors
# ---------------------------------------------------------------------------
class ConnectorError(AgentError):
    """Failure inside a backend adapter."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ForbiddenError(ConnectorError):
    """Credentials are missing or were rejected by the provider."""

    def __init__(self, provider: str, message: str, hint: str = "") -> None:
        super().__init__(provider, message)
        self.hint = hint


class TransportError(ConnectorError):
    """The request never produced a usable HTTP response."""


class MalformedResponseError(ConnectorError):
    """The provider answered with a payload the adapter cannot interpret."""


class SchemaConversionError(ConnectorError):
    """A tool input schema cannot be expressed in the backend's declaration format."""


# ---------------------------------------------------------------------------
# Tool errors
# ---------------------------------------------------------------------------
class ToolExecutionError(AgentError):
    """Raised when a requested tool cannot run or fails."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(message)
        self.tool = tool


class InvalidArgumentsError(ToolExecutionError):
    """The arguments do not satisfy the tool's input schema."""


class ToolNotFoundError(ToolExecutionError):
    """The model asked for a tool that is not in the catalogue."""

    def __init__(self, tool: str) -> None:
        super().__init__(tool, f"Tool '{tool}' is not registered.")
