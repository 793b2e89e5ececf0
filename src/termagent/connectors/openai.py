"""OpenAI Chat Completions connector."""

import json
from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
)

import openai

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

PROVIDER = "openai"


def convert_tools(tools: Mapping[str, Tool]) -> List[Dict[str, Any]]:
    """Translate tools into ``{"type": "function", "function": {...}}`` declarations."""
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


@register_connector(PROVIDER)
class OpenAIConnector(BaseConnector):
    """GPT models through the official ``openai`` SDK."""

    default_model = "gpt-4o-mini"
    forbidden_hint = (
        "Couldn't authenticate with the OpenAI API. Make sure you have the correct API key in "
        "the environment variable OPENAI_API_KEY."
    )
    # https://openai.com/api/pricing/
    prices = {
        "gpt-4o": (0.0025, 0.010),
        "gpt-4o-2024-08-06": (0.0025, 0.010),
        "gpt-4o-2024-05-13": (0.005, 0.015),
        "gpt-4o-mini": (0.00015, 0.0006),
        "gpt-4o-mini-2024-07-18": (0.00015, 0.0006),
        "o1-preview": (0.015, 0.060),
    }

    _client: openai.AsyncOpenAI | None = None

    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            api_key = self.settings.OPENAI_API_KEY
            if not api_key:
                raise self.forbidden("OPENAI_API_KEY is not set")
            self._client = openai.AsyncOpenAI(
                api_key=api_key, max_retries=0, http_client=self.http_client
            )
        return self._client

    def _params(self, request: QueryRequest) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in request.history)
        if request.user_prompt:
            messages.append({"role": "user", "content": request.user_prompt})
        return {"model": self.model_id, "messages": messages, "max_tokens": request.max_tokens}

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise self.forbidden(str(exc)) from exc
        except openai.APIConnectionError as exc:
            raise TransportError(PROVIDER, f"connection failed: {exc}") from exc
        except openai.APIResponseValidationError as exc:
            raise MalformedResponseError(PROVIDER, str(exc)) from exc
        except openai.APIStatusError as exc:
            raise TransportError(
                PROVIDER, f"model {self.model_id} returned status code {exc.status_code}: {exc}"
            ) from exc

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        client = self.client()
        params = self._params(request)

        if request.stream:
            return await self._stream(client, params)

        with self._errors():
            completion = await client.chat.completions.create(**params)

        self._usage(completion)
        if not completion.choices:
            raise MalformedResponseError(PROVIDER, "no response choices received")
        return completion.choices[0].message.content or ""

    async def _stream(self, client: openai.AsyncOpenAI, params: Dict[str, Any]) -> str:
        parts: List[str] = []
        with self._errors():
            stream = await client.chat.completions.create(
                **params, stream=True, stream_options={"include_usage": True}
            )
            async for chunk in stream:
                if chunk.usage is not None:
                    self.log_usage(chunk.usage.prompt_tokens, chunk.usage.completion_tokens)
                if chunk.choices and chunk.choices[0].delta.content:
                    self.emit(chunk.choices[0].delta.content)
                    parts.append(chunk.choices[0].delta.content)
        return "".join(parts)

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        client = self.client()
        params = self._params(request)
        tools = convert_tools(request.tools)
        if tools:
            params["tools"] = tools

        with self._errors():
            completion = await client.chat.completions.create(**params)

        self._usage(completion)
        if not completion.choices:
            raise MalformedResponseError(PROVIDER, "no response choices received")

        texts: List[str] = []
        calls: List[ToolCall] = []
        for choice in completion.choices:
            message = choice.message
            if message.content:
                texts.append(message.content)
            for tool_call in message.tool_calls or []:
                calls.append(_parse_tool_call(tool_call))

        return QueryResult(text="\n".join(texts), tool_call=self.first_call(calls))

    def _usage(self, completion: Any) -> None:
        usage = getattr(completion, "usage", None)
        if usage is not None:
            self.log_usage(usage.prompt_tokens, usage.completion_tokens)


def _parse_tool_call(tool_call: Any) -> ToolCall:
    function = getattr(tool_call, "function", None)
    if function is None or not function.name:
        raise MalformedResponseError(PROVIDER, "tool call name is empty")
    try:
        args = json.loads(function.arguments or "{}")
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            PROVIDER, f"tool call arguments are not valid JSON: {function.arguments!r}"
        ) from exc
    if not isinstance(args, dict):
        raise MalformedResponseError(PROVIDER, "tool call arguments are not an object")
    return ToolCall(name=function.name, args=args)
