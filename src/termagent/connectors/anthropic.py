"""Anthropic Messages API connector."""

from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
)

import anthropic

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

PROVIDER = "anthropic"


def convert_tools(tools: Mapping[str, Tool]) -> List[Dict[str, Any]]:
    """Translate tools into Anthropic ``tools`` entries (``input_schema`` is plain JSON Schema)."""
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
                "name": tool.name,
                "description": tool.description,
                "input_schema": {"type": "object", "properties": properties, "required": required},
            }
        )
    return specs


@register_connector(PROVIDER)
class AnthropicConnector(BaseConnector):
    """Claude models through the official ``anthropic`` SDK."""

    default_model = "claude-3-5-haiku-latest"
    forbidden_hint = (
        "Couldn't authenticate with the Anthropic API. Make sure you have the correct API key "
        "in the environment variable ANTHROPIC_API_KEY."
    )
    prices = {
        "claude-3-5-haiku-latest": (0.0008, 0.004),
        "claude-3-haiku-20240307": (0.00025, 0.00125),
        "claude-3-5-sonnet-latest": (0.003, 0.015),
        "claude-3-7-sonnet-latest": (0.003, 0.015),
    }

    _client: anthropic.AsyncAnthropic | None = None

    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            api_key = self.settings.ANTHROPIC_API_KEY
            if not api_key:
                raise self.forbidden("ANTHROPIC_API_KEY is not set")
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key, max_retries=0, http_client=self.http_client
            )
        return self._client

    def _params(self, request: QueryRequest) -> Dict[str, Any]:
        system = [request.system_prompt]
        messages: List[Dict[str, Any]] = []
        for message in request.history:
            if message.role == "system":
                system.append(message.content)
            else:
                messages.append({"role": message.role, "content": message.content})
        if request.user_prompt:
            messages.append({"role": "user", "content": request.user_prompt})

        return {
            "model": self.model_id,
            "max_tokens": request.max_tokens,
            "system": "\n\n".join(part for part in system if part),
            "messages": messages,
        }

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise self.forbidden(str(exc)) from exc
        except anthropic.APIConnectionError as exc:
            raise TransportError(PROVIDER, f"connection failed: {exc}") from exc
        except anthropic.APIResponseValidationError as exc:
            raise MalformedResponseError(PROVIDER, str(exc)) from exc
        except anthropic.APIStatusError as exc:
            raise TransportError(
                PROVIDER, f"model {self.model_id} returned status code {exc.status_code}: {exc}"
            ) from exc

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        client = self.client()
        params = self._params(request)

        with self._errors():
            if request.stream:
                async with client.messages.stream(**params) as stream:
                    async for text in stream.text_stream:
                        self.emit(text)
                    message = await stream.get_final_message()
            else:
                message = await client.messages.create(**params)

        self._usage(message)
        return "".join(_text_blocks(message))

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        client = self.client()
        params = self._params(request)
        tools = convert_tools(request.tools)
        if tools:
            params["tools"] = tools

        with self._errors():
            message = await client.messages.create(**params)

        self._usage(message)
        text = "".join(_text_blocks(message))
        calls = []
        for block in message.content:
            if block.type != "tool_use":
                continue
            if not block.name or not isinstance(block.input, dict):
                raise MalformedResponseError(PROVIDER, f"invalid tool_use block: {block}")
            calls.append(ToolCall(name=block.name, args=block.input))

        return QueryResult(text=text, tool_call=self.first_call(calls))

    def _usage(self, message: Any) -> None:
        usage = getattr(message, "usage", None)
        if usage is not None:
            self.log_usage(usage.input_tokens, usage.output_tokens)


def _text_blocks(message: Any) -> Iterator[str]:
    content = getattr(message, "content", None)
    if content is None:
        raise MalformedResponseError(PROVIDER, "response has no content")
    for block in content:
        if block.type == "text":
            yield block.text
