"""
Perplexity chat completions connector.

Perplexity has no native function calling, so tools are offered through the system prompt: the
catalogue is rendered as text and the model is asked to reply with a single JSON object::

    {"tool": "<name>", "args": {...}, "thought": "<why>"}

Prose around the object is kept as the round's text.  Any reply without such an object is plain
text.
"""

import json
import re
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
)

import httpx

from termagent.connectors import register_connector
from termagent.connectors.base import BaseConnector
from termagent.core.errors import (
    MalformedResponseError,
    TransportError,
)
from termagent.core.schema import (
    QueryRequest,
    QueryResult,
    ToolCall,
)
from termagent.tools import (
    Tool,
    iter_properties,
)

PROVIDER = "perplexity"
API_URL = "https://api.perplexity.ai/chat/completions"

TOOL_INSTRUCTIONS = """\
When you need to use a tool, respond with JSON like:
{"tool": "<name>", "args": { ... }, "thought": "<one sentence on why>"}
If no tool is needed, respond with plain text.
When using a tool, output only one JSON object and no extra text.
"""


def convert_tools(tools: Mapping[str, Tool]) -> str:
    """Render the tool catalogue as the text block appended to the system prompt."""
    lines = []
    for tool in tools.values():
        params = []
        for name, prop, is_required in iter_properties(tool.input_schema, PROVIDER):
            prop_type = prop.get("type", "string")
            if prop_type == "array":
                prop_type = f"array[{(prop.get('items') or {}).get('type', 'string')}]"
            marker = "" if is_required else "?"
            params.append(f"{name}{marker}: {prop_type} ({prop.get('description', '')})")
        lines.append(f"- {tool.name}({', '.join(params)}): {tool.description}")
    return "Available tools (parameters marked ? are optional):\n" + "\n".join(lines)


def _object_end(content: str, open_idx: int) -> int:
    """Index just past the brace matching ``content[open_idx]``, or -1."""
    # Count braces, outside of strings, to find the matching closing brace
    depth = 0
    in_string = False
    escaped = False
    for i in range(open_idx, len(content)):
        ch = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def find_json_objects(content: str) -> Iterator[tuple[int, int, Dict[str, Any]]]:
    """Yield ``(start, end, object)`` for every span of ``content`` that decodes to a JSON object.

    Each ``{`` is tried in turn, so braces in surrounding prose (an awk program, a shell brace
    expansion) do not hide an object further along.
    """
    open_idx = content.find("{")
    while open_idx >= 0:
        end = _object_end(content, open_idx)
        if end > 0:
            try:
                parsed = json.loads(content[open_idx:end], strict=False)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                yield open_idx, end, parsed
        open_idx = content.find("{", open_idx + 1)


def _without_span(content: str, start: int, end: int) -> str:
    rest = content[:start] + content[end:]
    # drop the code fence that wrapped the object
    rest = re.sub(r"```(?:json)?\s*```", "", rest)
    return rest.strip()


def _join(*parts: str) -> str:
    return "\n".join(part for part in parts if part)


def parse_reply(content: str) -> tuple[str, ToolCall | None]:
    """Split a reply into ``(text, tool_call)``.

    The first object carrying a ``"tool"`` key is the tool request.  Whatever prose surrounds it is
    kept as the text, followed by the object's ``thought`` when present.
    """
    objects = list(find_json_objects(content))
    request = next((item for item in objects if "tool" in item[2]), None)
    if request is None:
        for start, end, parsed in objects:
            # {"answer": "..."} is a plain answer wrapped in JSON
            if isinstance(parsed.get("answer"), str):
                return _join(_without_span(content, start, end), parsed["answer"]), None
        return content, None

    start, end, parsed = request
    name = parsed["tool"]
    args = parsed.get("args") or {}
    if not isinstance(name, str) or not name or not isinstance(args, dict):
        raise MalformedResponseError(PROVIDER, f"invalid tool request: {parsed}")
    thought = parsed.get("thought")
    text = _join(_without_span(content, start, end), thought if isinstance(thought, str) else "")
    return text, ToolCall(name=name, args=args)


@register_connector(PROVIDER)
class PerplexityConnector(BaseConnector):
    """Sonar models through Perplexity's OpenAI-style REST endpoint."""

    default_model = "sonar"
    forbidden_hint = (
        "Couldn't authenticate with the Perplexity API. Make sure you have the correct API key "
        "in the environment variable PERPLEXITY_KEY."
    )
    prices = {
        "sonar": (0.001, 0.001),
        "sonar-pro": (0.003, 0.015),
    }

    def _headers(self) -> Dict[str, str]:
        token = self.settings.PERPLEXITY_KEY
        if not token:
            raise self.forbidden("PERPLEXITY_KEY is not set")
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": f"Bearer {token}",
        }

    def _body(self, request: QueryRequest, system_prompt: str) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in request.history)
        if request.user_prompt:
            messages.append({"role": "user", "content": request.user_prompt})
        return {"model": self.model_id, "messages": messages, "max_tokens": request.max_tokens}

    def _check_status(self, status: int, body: str) -> None:
        if status in (401, 403):
            raise self.forbidden(f"perplexity - forbidden (status {status})")
        if status == 404:
            raise TransportError(PROVIDER, f"perplexity - not found: model {self.model_id}")
        if status != 200:
            raise TransportError(PROVIDER, f"perplexity returned status {status}: {body[:500]}")

    async def _complete(self, body: Dict[str, Any]) -> str:
        headers = self._headers()
        self.logger.debug("Request body: %s", body)
        try:
            async with self.http() as client:
                resp = await client.post(API_URL, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(PROVIDER, f"failed to send request: {exc}") from exc

        self._check_status(resp.status_code, resp.text)
        try:
            payload = resp.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError(PROVIDER, f"failed to unmarshal response: {exc}") from exc

        usage = payload.get("usage") or {}
        self.log_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))
        return content or ""

    async def _stream(self, body: Dict[str, Any]) -> str:
        headers = self._headers()
        parts: List[str] = []
        try:
            async with self.http() as client:
                async with client.stream(
                    "POST", API_URL, json={**body, "stream": True}, headers=headers
                ) as resp:
                    if resp.status_code != 200:
                        await resp.aread()
                        self._check_status(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        if not line.startswith("data: "):
                            continue
                        data = line[len("data: ") :]
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError as exc:
                            raise MalformedResponseError(PROVIDER, f"bad stream chunk: {data}") from exc
                        if chunk.get("usage"):
                            usage = chunk["usage"]
                            self.log_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))
                        for choice in chunk.get("choices") or []:
                            text = (choice.get("delta") or {}).get("content") or ""
                            self.emit(text)
                            parts.append(text)
        except httpx.HTTPError as exc:
            raise TransportError(PROVIDER, f"failed to stream response: {exc}") from exc
        return "".join(parts)

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        body = self._body(request, request.system_prompt)
        if request.stream:
            return await self._stream(body)
        return await self._complete(body)

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        system_prompt = request.system_prompt
        if request.tools:
            system_prompt = "\n\n".join(
                [system_prompt, TOOL_INSTRUCTIONS, convert_tools(request.tools)]
            )

        content = await self._complete(self._body(request, system_prompt))
        if not request.tools:
            return QueryResult(text=content)
        text, tool_call = parse_reply(content)
        return QueryResult(text=text, tool_call=tool_call)
