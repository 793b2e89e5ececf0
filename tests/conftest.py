"""Shared fixtures: settings without the developer's environment, and mock HTTP plumbing."""

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
)

import httpx
import pytest

from termagent.config import Settings

Handler = Callable[[httpx.Request], httpx.Response]


def make_settings(**overrides: Any) -> Settings:
    """Settings that ignore ``.env`` and never ask for confirmation."""
    values: Dict[str, Any] = {
        "CONFIRM_COMMANDS": False,
        "ANTHROPIC_API_KEY": "test-anthropic",
        "OPENAI_API_KEY": "test-openai",
        "GEMINI_API_KEY": "test-gemini",
        "PERPLEXITY_KEY": "test-perplexity",
        "OLLAMA_HOST": "http://ollama.test:11434",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class Recorder:
    """Collects every request a :class:`httpx.MockTransport` sees and answers from a handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    @property
    def body(self) -> Dict[str, Any]:
        """JSON body of the last request."""
        return json.loads(self.requests[-1].content)


def sse(*events: Any, done: bool = False) -> httpx.Response:
    """A ``text/event-stream`` response carrying *events* as ``data:`` lines."""
    lines = [f"data: {json.dumps(event)}\n\n" for event in events]
    if done:
        lines.append("data: [DONE]\n\n")
    return httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content="".join(lines).encode()
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sink() -> List[str]:
    """Collected streaming chunks; pass ``sink.append`` to a connector."""
    return []
