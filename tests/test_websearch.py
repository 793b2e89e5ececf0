"""Tests for the DuckDuckGo websearch tool."""

import asyncio

import httpx
import pytest

from termagent.config import Settings
from termagent.core.errors import ToolExecutionError
from termagent.tools.websearch import (
    WebsearchTool,
    format_results,
)

PAYLOAD = {
    "Results": [{"FirstURL": "https://www.python.org/", "Text": "Official site"}],
    "RelatedTopics": [
        {"FirstURL": "https://duckduckgo.com/Python", "Text": "Python (language)"},
        {
            "Name": "Snakes",
            "Topics": [
                {"FirstURL": "https://duckduckgo.com/Pythonidae", "Text": "Pythonidae"},
            ],
        },
        {"Text": "entry without a link"},
    ],
}


def test_format_results_flattens_topic_groups() -> None:
    assert format_results(PAYLOAD) == "\n".join(
        [
            "- [Official site](https://www.python.org/)",
            "- [Python (language)](https://duckduckgo.com/Python)",
            "- [Pythonidae](https://duckduckgo.com/Pythonidae)",
        ]
    )


def test_format_results_limit_and_empty() -> None:
    assert format_results(PAYLOAD, limit=1).count("\n") == 0
    assert format_results({}) == "No results found."


def test_websearch_queries_api() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=PAYLOAD)

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            tool = WebsearchTool(Settings(_env_file=None), client=client)
            return await tool({"query": "python"})

    result = asyncio.run(scenario())
    assert seen == {"q": "python", "format": "json", "no_html": "1"}
    assert result.startswith("- [Official site]")


def test_websearch_http_error() -> None:
    async def scenario() -> str:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            return await WebsearchTool(Settings(_env_file=None), client=client)({"query": "x"})

    with pytest.raises(ToolExecutionError, match="request failed"):
        asyncio.run(scenario())
