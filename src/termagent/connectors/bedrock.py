"""
AWS Bedrock connector using the Converse API.

``boto3`` is synchronous, so every call runs in a daemon worker thread.  Cancelling the awaiting
task abandons that thread rather than joining it; the botocore timeouts bound how long it lingers.
Credentials come from the usual AWS chain (environment, shared config, SSO, instance role).
"""

import asyncio
import threading
from contextlib import contextmanager
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    TypeVar,
)

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)

from termagent.connectors import register_connector
from termagent.connectors.base import (
    HTTP_TIMEOUT,
    BaseConnector,
)
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

PROVIDER = "bedrock"
CONNECT_TIMEOUT = 10.0

T = TypeVar("T")

FORBIDDEN_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}


def convert_tools(tools: Mapping[str, Tool]) -> Dict[str, Any]:
    """Translate tools into a Converse ``toolConfig``."""
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
            properties[name] = spec
            if is_required:
                required.append(name)

        specs.append(
            {
                "toolSpec": {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": {
                        "json": {"type": "object", "properties": properties, "required": required}
                    },
                }
            }
        )
    return {"tools": specs}


@register_connector(PROVIDER)
class BedrockConnector(BaseConnector):
    """Any Converse-capable model hosted on Amazon Bedrock."""

    default_model = "anthropic.claude-3-haiku-20240307-v1:0"
    forbidden_hint = (
        "Couldn't authenticate with the Bedrock API. Make sure you have the correct AWS "
        "credentials set up."
    )
    prices = {
        "anthropic.claude-3-haiku-20240307-v1:0": (0.00025, 0.00125),
        "anthropic.claude-3-5-haiku-20241022-v1:0": (0.0008, 0.004),
    }

    def __init__(self, *args: Any, client: Any = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client = client

    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "bedrock-runtime",
                region_name=self.settings.AWS_REGION,
                config=Config(
                    connect_timeout=CONNECT_TIMEOUT,
                    read_timeout=HTTP_TIMEOUT,
                    retries={"total_max_attempts": 1},
                ),
            )
        return self._client

    def _params(self, request: QueryRequest) -> Dict[str, Any]:
        system = [{"text": request.system_prompt}] if request.system_prompt else []
        messages: List[Dict[str, Any]] = []
        for message in request.history:
            if message.role == "system":
                system.append({"text": message.content})
            else:
                messages.append({"role": message.role, "content": [{"text": message.content}]})
        if request.user_prompt:
            messages.append({"role": "user", "content": [{"text": request.user_prompt}]})

        return {
            "modelId": self.model_id,
            "system": system,
            "messages": messages,
            "inferenceConfig": {"maxTokens": request.max_tokens},
        }

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise self.forbidden(str(exc)) from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in FORBIDDEN_CODES:
                raise self.forbidden(str(exc)) from exc
            if "Could not resolve the foundation model" in str(exc):
                raise TransportError(
                    PROVIDER,
                    f"could not resolve the foundation model from model identifier "
                    f"'{self.model_id}'; verify it exists in region {self.settings.AWS_REGION}",
                ) from exc
            raise TransportError(PROVIDER, str(exc)) from exc
        except EndpointConnectionError as exc:
            raise TransportError(
                PROVIDER,
                f"Bedrock is not reachable in region {self.settings.AWS_REGION}: {exc}",
            ) from exc
        except BotoCoreError as exc:
            raise TransportError(PROVIDER, str(exc)) from exc

    def _converse(self, params: Dict[str, Any]) -> Dict[str, Any]:
        with self._errors():
            return self.client().converse(**params)

    def _converse_stream(self, params: Dict[str, Any]) -> str:
        parts: List[str] = []
        with self._errors():
            response = self.client().converse_stream(**params)
            for event in response["stream"]:
                if "contentBlockDelta" in event:
                    text = event["contentBlockDelta"].get("delta", {}).get("text", "")
                    self.emit(text)
                    parts.append(text)
                elif "metadata" in event:
                    self._usage(event["metadata"])
        return "".join(parts)

    async def query(self, request: QueryRequest) -> str:
        self.logger.debug("Query model=%s stream=%s", self.model_id, request.stream)
        params = self._params(request)
        if request.stream:
            return await run_detached(self._converse_stream, params)

        response = await run_detached(self._converse, params)
        self._usage(response)
        return "".join(block.get("text", "") for block in _content(response))

    async def query_with_tool(self, request: QueryRequest) -> QueryResult:
        self.logger.debug("Query with tool model=%s tools=%d", self.model_id, len(request.tools))
        params = self._params(request)
        if request.tools:
            params["toolConfig"] = convert_tools(request.tools)

        response = await run_detached(self._converse, params)
        self._usage(response)

        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in _content(response):
            if "toolUse" in block:
                use = block["toolUse"]
                if not use.get("name") or not isinstance(use.get("input", {}), dict):
                    raise MalformedResponseError(PROVIDER, f"invalid toolUse block: {use}")
                calls.append(ToolCall(name=use["name"], args=use.get("input") or {}))
            elif "text" in block:
                texts.append(block["text"])

        return QueryResult(text="".join(texts), tool_call=self.first_call(calls))

    def _usage(self, payload: Mapping[str, Any]) -> None:
        usage = payload.get("usage")
        if usage:
            self.log_usage(usage.get("inputTokens"), usage.get("outputTokens"))


async def run_detached(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking call on a daemon thread and await its result.

    Unlike ``asyncio.to_thread`` the thread does not belong to the loop's default executor, so a
    cancelled caller returns at once and ``asyncio.run`` does not wait for the call at shutdown.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _resolve(result: Any, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _target() -> None:
        result, error = None, None
        try:
            result = func(*args)
        except BaseException as exc:  # pylint: disable=broad-except
            error = exc
        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # the loop has already closed, nobody is waiting
            pass

    threading.Thread(target=_target, name=f"{PROVIDER}-call", daemon=True).start()
    return await future


def _content(response: Mapping[str, Any]) -> List[Dict[str, Any]]:
    try:
        content = response["output"]["message"]["content"]
    except (KeyError, TypeError) as exc:
        raise MalformedResponseError(PROVIDER, f"unexpected Converse response: {response}") from exc
    if not isinstance(content, list):
        raise MalformedResponseError(PROVIDER, "Converse message content is not a list")
    return content
