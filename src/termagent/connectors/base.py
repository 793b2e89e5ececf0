"""
The connector contract every backend adapter implements.

A connector is the only place that *directly* talks to an LLM provider.  The agent loop only sees
:meth:`BaseConnector.query` and :meth:`BaseConnector.query_with_tool`, so it stays provider-agnostic.
"""

import logging
import sys
from abc import (
    ABC,
    abstractmethod,
)
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Callable,
    ClassVar,
    List,
    Mapping,
    Optional,
    Tuple,
)

import httpx

from termagent.config import Settings
from termagent.core.errors import ForbiddenError
from termagent.core.schema import (
    QueryRequest,
    QueryResult,
    ToolCall,
    Usage,
)

Sink = Callable[[str], None]

HTTP_TIMEOUT = 90.0


def stdout_sink(chunk: str) -> None:
    """Default streaming sink: write straight to the terminal."""
    sys.stdout.write(chunk)
    sys.stdout.flush()


class BaseConnector(ABC):
    """Abstract connector: provider-agnostic request in, text or a single tool call out."""

    provider: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    forbidden_hint: ClassVar[str] = ""
    # USD per 1k tokens, (input, output)
    prices: ClassVar[Mapping[str, Tuple[float, float]]] = {}

    def __init__(
        self,
        model_id: str | None,
        settings: Settings,
        *,
        sink: Sink | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.model_id = model_id or self.default_model
        self.settings = settings
        self.sink = sink or stdout_sink
        self.http_client = http_client
        self.logger = logger or logging.getLogger(type(self).__module__)

    @abstractmethod
    async def query(self, request: QueryRequest) -> str:
        """Run one round without tools and return the full text.

        When ``request.stream`` is set, chunks are written to :attr:`sink` as they arrive.
        """

    @abstractmethod
    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        """Run one round offering ``request.tools`` and report the model's choice."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------
    def forbidden(self, message: str) -> ForbiddenError:
        return ForbiddenError(self.provider, message, self.forbidden_hint)

    def emit(self, chunk: str) -> None:
        if chunk:
            self.sink(chunk)

    def log_usage(self, input_tokens: int | None, output_tokens: int | None) -> Usage:
        """Log token usage and, when the model is priced, its cost.  Never affects control flow."""
        usage = Usage(input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)
        price = self.prices.get(self.model_id)
        if price is not None:
            usage.price = (
                price[0] * usage.input_tokens / 1000 + price[1] * usage.output_tokens / 1000
            )
        self.logger.debug(
            "Usage provider=%s model=%s input=%d output=%d price=%s",
            self.provider,
            self.model_id,
            usage.input_tokens,
            usage.output_tokens,
            usage.price,
        )
        return usage

    def first_call(self, calls: List[ToolCall]) -> Optional[ToolCall]:
        """Keep the first tool call of a round; any further calls are dropped."""
        if not calls:
            return None
        if len(calls) > 1:
            self.logger.warning(
                "Model requested %d tool calls, only '%s' is executed; dropped: %s",
                len(calls),
                calls[0].name,
                [call.name for call in calls[1:]],
            )
        return calls[0]

    @asynccontextmanager
    async def http(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected HTTP client, or a short-lived one closed on exit."""
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
            yield client
