"""Ollama connector for locally hosted models, talking to the Ollama REST API with ``httpx``."""

import json
from typing import (
    Any,
    Dict,
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

PROVIDER = "ollama"


def convert_tools(tools: Mapping[str, Tool]) -> List[Dict[str, Any]]:
    """Translate tools into the OpenAI-style function declarations ``/api/chat`` accepts."""
    specs = []
    for tool in tools.values():
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, prop, is_required in iter_properties(tool.input_schema, PROVIDER):
            spec: Dict[str, Any] = {
                "type": prop.get("type", "string"),
                "description": prop.get("description", ""),
            }
            if spec["type"] == "array":
                spec["items"] = {"type": (prop.get("items") or {}).get("type", "string")}
            if "enum" in prop:
                spec["enum"] = list(prop["enum"])
            properties[name] = spec
            if is_required:
                required.append(name)

        specs.append(
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": required,
                    },
                },
            }
        )
    return specs


def fold_history(request: QueryRequest) -> str:
    """Flatten history and the user prompt into one ``/api/generate`` prompt."""
    lines = [f"{message.role}: {message.content}" for message in request.history]
    if lines:
        lines.append(f"user: {request.user_prompt}")
        return "\n\n".join(lines)
    return request.user_prompt


@register_connector(PROVIDER)
class OllamaConnector(BaseConnector):
    """Any model pulled into a local (or remote) Ollama server."""

    default_model = "llama3.2"
    forbidden_hint = (
        "The Ollama server refused the request. Check OLLAMA_HOST and any proxy authentication "
        "in front of it."
    )

    def _url(self, path: str) -> str:
        return f"{self.settings.OLLAMA_HOST.rstrip('/')}{path}"

    def _check_status(self, status: int, body: str) -> None:
        if status in (401, 403):
            raise self.forbidden(f"status {status}: {body[:200]}")
        if status == 404:
            raise TransportError(
                PROVIDER, f"model {self.model_id} not found, try `ollama pull {self.model_id}`"
            )
        if status != 200:
            raise TransportError(PROVIDER, f"Ollama returned status {status}: {body[:500]}")

    def _connect_error(self, exc: httpx.HTTPError) -> TransportError:
        return TransportError(
            PROVIDER, f"cannot reach Ollama at {self.settings.OLLAMA_HOST} (OLLAMA_HOST): {exc}"
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.logger.debug("Request body: %s", body)
        try:
            async with self.http() as client:
                resp = await client.post(self._url(path), json=body)
        except httpx.HTTPError as exc:
            raise self._connect_error(exc) from exc

        self._check_status(resp.status_code, resp.text)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(PROVIDER, f"response is not JSON: {exc}") from exc
        self._usage(payload)
        return payload

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        body = {
            "model": self.model_id,
            "system": request.system_prompt,
            "prompt": fold_history(request),
            "stream": request.stream,
            "options": {"num_predict": request.max_tokens},
        }
        if request.stream:
            return await self._stream(body)

        payload = await self._post("/api/generate", body)
        if "response" not in payload:
            raise MalformedResponseError(PROVIDER, f"no 'response' field in: {payload}")
        return payload["response"]

    async def _stream(self, body: Dict[str, Any]) -> str:
        parts: List[str] = []
        try:
            async with self.http() as client:
                async with client.stream("POST", self._url("/api/generate"), json=body) as resp:
                    if resp.status_code != 200:
                        await resp.aread()
                        self._check_status(resp.status_code, resp.text)
                    # newline-delimited JSON
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise MalformedResponseError(PROVIDER, f"bad stream chunk: {line}") from exc
                        if chunk.get("error"):
                            raise TransportError(PROVIDER, chunk["error"])
                        text = chunk.get("response", "")
                        self.emit(text)
                        parts.append(text)
                        if chunk.get("done"):
                            self._usage(chunk)
                            break
        except httpx.HTTPError as exc:
            raise self._connect_error(exc) from exc
        return "".join(parts)

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        messages: List[Dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in request.history)
        if request.user_prompt:
            messages.append({"role": "user", "content": request.user_prompt})

        body: Dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "stream": False,
            "options": {"num_predict": request.max_tokens},
        }
        tools = convert_tools(request.tools)
        if tools:
            body["tools"] = tools

        payload = await self._post("/api/chat", body)
        message = payload.get("message")
        if not isinstance(message, dict):
            raise MalformedResponseError(PROVIDER, f"no 'message' field in: {payload}")

        calls = [_parse_tool_call(call) for call in message.get("tool_calls") or []]
        return QueryResult(text=message.get("content") or "", tool_call=self.first_call(calls))

    def _usage(self, payload: Mapping[str, Any]) -> None:
        if "eval_count" in payload:
            self.log_usage(payload.get("prompt_eval_count"), payload.get("eval_count"))


def _parse_tool_call(call: Mapping[str, Any]) -> ToolCall:
    function = call.get("function") or {}
    name = function.get("name")
    if not name:
        raise MalformedResponseError(PROVIDER, f"tool call without a name: {call}")
    args = function.get("arguments") or {}
    # some models return the arguments JSON-encoded
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(
                PROVIDER, f"tool call arguments are not valid JSON: {args!r}"
            ) from exc
    if not isinstance(args, dict):
        raise MalformedResponseError(PROVIDER, "tool call arguments are not an object")
    return ToolCall(name=name, args=args)
