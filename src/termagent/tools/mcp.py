"""
Tools discovered from Model Context Protocol (MCP) capability servers.

Each server definition describes a subprocess (``command``, ``args``, ``env``) that speaks MCP over
stdio.  :class:`McpServerPool` starts every server, lists its tools and keeps the sessions open
until the pool is closed, at which point the subprocesses are terminated.

Definition file format (JSON)::

    {
        "inputs": [],
        "servers": {
            "time": {"command": "uvx", "args": ["mcp-server-time"], "env": {}}
        }
    }
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from types import TracebackType
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Type,
)

from mcp import (
    ClientSession,
    StdioServerParameters,
)
from mcp.client.stdio import (
    get_default_environment,
    stdio_client,
)
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from termagent.core.errors import ToolExecutionError
from termagent.tools import Tool

logger = logging.getLogger(__name__)

DISCOVERY_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Definition file
# ---------------------------------------------------------------------------
class McpInput(BaseModel):
    """An input prompt declared by the definition file (kept for compatibility)."""

    type: str
    id: str = ""
    description: str = ""
    password: bool = False


class McpServer(BaseModel):
    """How to start one capability server."""

    name: str = ""
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class McpFileSchema(BaseModel):
    """Top-level structure of the MCP definition file."""

    inputs: List[McpInput] = Field(default_factory=list)
    servers: Dict[str, McpServer] = Field(default_factory=dict)


def load_mcp_file(path: str | Path) -> McpFileSchema:
    """Read and validate an MCP definition file."""
    try:
        return McpFileSchema.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValueError(f"failed to read MCP file {path}: {exc}") from exc
    except ValidationError as exc:
        raise ValueError(f"failed to parse MCP file {path}: {exc}") from exc


def flatten_content(blocks: List[Any]) -> str:
    """Join the content blocks of a tool result into one string, in order."""
    parts = []
    for block in blocks:
        if getattr(block, "type", None) == "text":
            parts.append(block.text)
        else:
            parts.append(block.model_dump_json(exclude_none=True))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Tool wrapper
# ---------------------------------------------------------------------------
class McpTool(Tool):
    """Adapts one tool exposed by an MCP server to the :class:`Tool` interface."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Mapping[str, Any],
        session: ClientSession,
        server: str = "",
    ) -> None:
        self.name = name
        self.description = description
        self.input_schema = dict(input_schema)
        self.session = session
        self.server = server

    async def run(self, args: Dict[str, Any]) -> str:
        logger.debug("Calling MCP tool '%s' on server '%s' with %s", self.name, self.server, args)
        try:
            result = await self.session.call_tool(self.name, args)
        except Exception as exc:  # noqa: BLE001
            raise ToolExecutionError(self.name, f"error calling tool {self.name}: {exc}") from exc

        text = flatten_content(result.content)
        if result.isError:
            raise ToolExecutionError(self.name, f"tool {self.name} reported an error: {text}")
        return text


# ---------------------------------------------------------------------------
# Server pool
# ---------------------------------------------------------------------------
class McpServerPool:
    """Start capability servers and expose the tools they provide."""

    def __init__(
        self, servers: Mapping[str, McpServer], *, log: logging.Logger | None = None
    ) -> None:
        self.servers = dict(servers)
        self.tools: List[McpTool] = []
        self.logger = log or logger
        self._stack: Optional[AsyncExitStack] = None

    @classmethod
    def from_file(cls, path: str | Path | None, **kwargs: Any) -> "McpServerPool":
        """Build a pool from a definition file; no path means no servers."""
        if not path:
            return cls({}, **kwargs)
        return cls(load_mcp_file(path).servers, **kwargs)

    async def __aenter__(self) -> "McpServerPool":
        self._stack = AsyncExitStack()
        for name, server in self.servers.items():
            try:
                self.tools.extend(await self._connect(name, server))
            except asyncio.CancelledError:
                await self._stack.aclose()
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Couldn't list tools for server %s. Skipping: %s", name, exc)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self.tools = []

    async def _connect(self, name: str, server: McpServer) -> List[McpTool]:
        params = StdioServerParameters(
            command=server.command,
            args=server.args,
            env={**get_default_environment(), **server.env},
        )
        server_stack = AsyncExitStack()
        try:
            read, write = await server_stack.enter_async_context(stdio_client(params))
            session = await server_stack.enter_async_context(ClientSession(read, write))
            init = await asyncio.wait_for(session.initialize(), DISCOVERY_TIMEOUT)
            listed = await asyncio.wait_for(session.list_tools(), DISCOVERY_TIMEOUT)
        except BaseException:
            await server_stack.aclose()
            raise

        assert self._stack is not None
        self._stack.push_async_callback(server_stack.aclose)
        self.logger.debug(
            "Initialized with server %s (%s %s), %d tools",
            name,
            init.serverInfo.name,
            init.serverInfo.version,
            len(listed.tools),
        )
        return [
            McpTool(tool.name, tool.description or "", tool.inputSchema, session, server=name)
            for tool in listed.tools
        ]
