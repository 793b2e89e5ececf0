"""Google Gemini connector, talking to the Generative Language REST API with ``httpx``."""

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

PROVIDER = "google"

# Gemini spells JSON Schema types in upper case
GENAI_TYPES = {
    "string": "STRING",
    "integer": "INTEGER",
    "number": "NUMBER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


def convert_input_schema(schema: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate one flat JSON Schema object into a Gemini ``Schema``."""
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for name, prop, is_required in iter_properties(schema, PROVIDER):
        spec: Dict[str, Any] = {
            "type": GENAI_TYPES[prop.get("type", "string")],
            "description": prop.get("description", ""),
        }
        if spec["type"] == "ARRAY":
            spec["items"] = {"type": GENAI_TYPES[(prop.get("items") or {}).get("type", "string")]}
        if "enum" in prop:
            spec["enum"] = [str(value) for value in prop["enum"]]
        properties[name] = spec
        if is_required:
            required.append(name)
    return {"type": "OBJECT", "properties": properties, "required": required}


def convert_tools(tools: Mapping[str, Tool]) -> List[Dict[str, Any]]:
    """Translate tools into a single Gemini ``tools`` entry holding every function declaration."""
    declarations = []
    for tool in tools.values():
        declaration: Dict[str, Any] = {"name": tool.name, "description": tool.description}
        parameters = convert_input_schema(tool.input_schema)
        # Gemini rejects OBJECT schemas without properties
        if parameters["properties"]:
            declaration["parameters"] = parameters
        declarations.append(declaration)
    return [{"functionDeclarations": declarations}] if declarations else []


@register_connector(PROVIDER)
class GoogleConnector(BaseConnector):
    """Gemini models through ``generateContent`` / ``streamGenerateContent``."""

    default_model = "gemini-2.0-flash-lite"
    forbidden_hint = (
        "Couldn't authenticate with Google AI. Make sure you have the correct API key in the "
        "environment variable GEMINI_API_KEY."
    )
    prices = {
        "gemini-2.0-flash-lite": (0.000075, 0.0003),
        "gemini-2.0-flash": (0.0001, 0.0004),
    }

    def _url(self, method: str) -> str:
        return f"{self.settings.GOOGLE_API_BASE.rstrip('/')}/models/{self.model_id}:{method}"

    def _headers(self) -> Dict[str, str]:
        api_key = self.settings.GEMINI_API_KEY
        if not api_key:
            raise self.forbidden("GEMINI_API_KEY is required to use Google Gemini models")
        return {"x-goog-api-key": api_key, "content-type": "application/json"}

    def _body(self, request: QueryRequest) -> Dict[str, Any]:
        system = [request.system_prompt]
        contents: List[Dict[str, Any]] = []
        for message in request.history:
            if message.role == "system":
                system.append(message.content)
                continue
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.content}]})
        if request.user_prompt:
            contents.append({"role": "user", "parts": [{"text": request.user_prompt}]})

        return {
            "systemInstruction": {"parts": [{"text": "\n\n".join(p for p in system if p)}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": request.max_tokens},
        }

    def _check_status(self, status: int, body: str) -> None:
        if status in (401, 403) or (status == 400 and "API_KEY_INVALID" in body):
            raise self.forbidden(f"status {status}: {body[:200]}")
        if status != 200:
            raise TransportError(PROVIDER, f"Google AI returned status {status}: {body[:500]}")

    async def _post(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers()
        try:
            async with self.http() as client:
                resp = await client.post(self._url(method), json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(PROVIDER, f"error sending message to Google AI: {exc}") from exc

        self._check_status(resp.status_code, resp.text)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(PROVIDER, f"response is not JSON: {exc}") from exc
        self._usage(payload)
        return payload

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        body = self._body(request)
        if request.stream:
            return await self._stream(body)

        payload = await self._post("generateContent", body)
        return "".join(part.get("text", "") for part in _first_candidate_parts(payload))

    async def _stream(self, body: Dict[str, Any]) -> str:
        headers = self._headers()
        parts: List[str] = []
        try:
            async with self.http() as client:
                async with client.stream(
                    "POST",
                    self._url("streamGenerateContent"),
                    params={"alt": "sse"},
                    json=body,
                    headers=headers,
                ) as resp:
                    if resp.status_code != 200:
                        await resp.aread()
                        self._check_status(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        if not line.startswith("data: "):
                            continue
                        try:
                            event = json.loads(line[len("data: ") :])
                        except json.JSONDecodeError as exc:
                            raise MalformedResponseError(
                                PROVIDER, f"bad stream event: {line}"
                            ) from exc
                        self._usage(event)
                        if not event.get("candidates"):
                            continue
                        for part in _first_candidate_parts(event):
                            text = part.get("text", "")
                            self.emit(text)
                            parts.append(text)
        except httpx.HTTPError as exc:
            raise TransportError(PROVIDER, f"error streaming from Google AI: {exc}") from exc
        return "".join(parts)

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        body = self._body(request)
        tools = convert_tools(request.tools)
        if tools:
            body["tools"] = tools

        payload = await self._post("generateContent", body)
        self.logger.debug("Received response from Google AI: %s", payload)

        texts: List[str] = []
        calls: List[ToolCall] = []
        for part in _first_candidate_parts(payload):
            if "functionCall" in part:
                call = part["functionCall"]
                if not call.get("name") or not isinstance(call.get("args", {}), dict):
                    raise MalformedResponseError(PROVIDER, f"invalid functionCall: {call}")
                calls.append(ToolCall(name=call["name"], args=call.get("args") or {}))
            elif "text" in part:
                texts.append(part["text"])

        return QueryResult(text="".join(texts), tool_call=self.first_call(calls))

    def _usage(self, payload: Mapping[str, Any]) -> None:
        usage = payload.get("usageMetadata")
        if usage and "candidatesTokenCount" in usage:
            self.log_usage(usage.get("promptTokenCount"), usage.get("candidatesTokenCount"))


def _first_candidate_parts(payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
    candidates = payload.get("candidates")
    if not candidates:
        raise MalformedResponseError(PROVIDER, "no response from Google AI")
    content = candidates[0].get("content")
    if content is None:
        reason = candidates[0].get("finishReason", "unknown")
        raise MalformedResponseError(PROVIDER, f"candidate has no content (finishReason={reason})")
    parts = content.get("parts")
    if not isinstance(parts, list):
        raise MalformedResponseError(PROVIDER, "candidate content has no parts")
    return parts
