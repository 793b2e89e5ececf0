"""Web search through the DuckDuckGo instant answer API."""

import logging
from typing import (
    Any,
    Dict,
    List,
)

import httpx

from termagent.config import Settings
from termagent.core.errors import ToolExecutionError
from termagent.tools import (
    Tool,
    register_builtin,
)

DUCKDUCKGO_API_URL = "https://api.duckduckgo.com/"
NUM_RESULTS = 5


def format_results(payload: Dict[str, Any], limit: int = NUM_RESULTS) -> str:
    """Render the first *limit* results of a DuckDuckGo payload as a markdown list."""
    entries: List[Dict[str, Any]] = list(payload.get("Results") or [])
    for topic in payload.get("RelatedTopics") or []:
        # Topic groups nest their entries under "Topics"
        entries.extend(topic.get("Topics", [topic]))

    lines = []
    for entry in entries:
        url = entry.get("FirstURL")
        if not url:
            continue
        heading = entry.get("Heading") or entry.get("Text") or url
        lines.append(f"- [{heading}]({url})")
        if len(lines) >= limit:
            break

    return "\n".join(lines) if lines else "No results found."


@register_builtin("websearch")
class WebsearchTool(Tool):
    """Search the web and return a short markdown list of links."""

    name = "websearch"
    description = (
        "Search the web using DuckDuckGo. The input is a search query; the output is a "
        "markdown list of the first few results."
    )
    input_schema: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to use for the web search.",
            },
        },
        "required": ["query"],
    }

    def __init__(
        self,
        settings: Settings,  # pylint: disable=unused-argument
        *,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)

    async def run(self, args: Dict[str, Any]) -> str:
        params = {"q": args["query"], "format": "json", "no_html": "1"}
        self.logger.debug("DuckDuckGo query: %s", params["q"])
        try:
            if self.client is not None:
                resp = await self.client.get(DUCKDUCKGO_API_URL, params=params)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await client.get(DUCKDUCKGO_API_URL, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise ToolExecutionError(self.name, f"DuckDuckGo API request failed: {exc}") from exc
        except ValueError as exc:
            raise ToolExecutionError(
                self.name, f"failed to decode DuckDuckGo API response: {exc}"
            ) from exc

        return format_results(payload)
