"""Tests for MCP definition files, content flattening and tool wrapping."""

import asyncio
import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

import pytest
from mcp.types import (
    CallToolResult,
    ImageContent,
    TextContent,
)

from termagent.core.errors import ToolExecutionError
from termagent.tools.mcp import (
    McpServer,
    McpServerPool,
    McpTool,
    flatten_content,
    load_mcp_file,
)


class FakeSession:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[tuple] = []

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        if self.error is not None:
            raise self.error
        return self.result


SCHEMA = {
    "type": "object",
    "properties": {"timezone": {"type": "string", "description": "IANA zone"}},
    "required": ["timezone"],
}


def test_load_mcp_file(tmp_path: Path) -> None:
    path = tmp_path / "mcp.json"
    path.write_text(
        json.dumps(
            {
                "inputs": [{"type": "promptString", "id": "token", "password": True}],
                "servers": {
                    "time": {"command": "uvx", "args": ["mcp-server-time"]},
                    "git": {"command": "git-mcp", "env": {"GIT_DIR": "/repo"}},
                },
            }
        ),
        encoding="utf-8",
    )
    schema = load_mcp_file(path)
    assert set(schema.servers) == {"time", "git"}
    assert schema.servers["time"].args == ["mcp-server-time"]
    assert schema.servers["git"].env == {"GIT_DIR": "/repo"}
    assert schema.inputs[0].password is True


def test_load_mcp_file_errors(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="failed to read"):
        load_mcp_file(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text('{"servers": {"x": {"args": []}}}', encoding="utf-8")
    with pytest.raises(ValueError, match="failed to parse"):
        load_mcp_file(bad)


def test_flatten_content_keeps_order() -> None:
    blocks = [
        TextContent(type="text", text="first "),
        ImageContent(type="image", data="aGk=", mimeType="image/png"),
        TextContent(type="text", text=" last"),
    ]
    flat = flatten_content(blocks)
    assert flat.startswith("first {")
    assert flat.endswith("} last")
    assert json.loads(flat[len("first ") : -len(" last")])["mimeType"] == "image/png"


def test_mcp_tool_calls_session() -> None:
    session = FakeSession(
        CallToolResult(content=[TextContent(type="text", text="12:00")], isError=False)
    )
    tool = McpTool("get_time", "Current time", SCHEMA, session, server="time")
    assert asyncio.run(tool({"timezone": "UTC"})) == "12:00"
    assert session.calls == [("get_time", {"timezone": "UTC"})]


def test_mcp_tool_validates_before_calling() -> None:
    session = FakeSession()
    tool = McpTool("get_time", "Current time", SCHEMA, session)
    with pytest.raises(ToolExecutionError):
        asyncio.run(tool({}))
    assert session.calls == []


def test_mcp_tool_errors() -> None:
    failing = McpTool(
        "get_time",
        "",
        SCHEMA,
        FakeSession(CallToolResult(content=[TextContent(type="text", text="bad zone")], isError=True)),
    )
    with pytest.raises(ToolExecutionError, match="bad zone"):
        asyncio.run(failing({"timezone": "Mars/Base"}))

    broken = McpTool("get_time", "", SCHEMA, FakeSession(error=ConnectionError("gone")))
    with pytest.raises(ToolExecutionError, match="gone"):
        asyncio.run(broken({"timezone": "UTC"}))


def test_pool_skips_servers_that_fail_to_start(caplog: pytest.LogCaptureFixture) -> None:
    servers = {"ghost": McpServer(command="/nonexistent/terminal-agent-test-server")}

    async def scenario() -> list:
        async with McpServerPool(servers) as pool:
            return list(pool.tools)

    with caplog.at_level(logging.WARNING, logger="termagent.tools.mcp"):
        assert asyncio.run(scenario()) == []
    assert "Couldn't list tools for server ghost" in caplog.text


def test_pool_without_file_is_empty() -> None:
    async def scenario() -> list:
        async with McpServerPool.from_file(None) as pool:
            return list(pool.tools)

    assert asyncio.run(scenario()) == []
