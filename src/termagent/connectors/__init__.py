"""
Backend connectors for the terminal agent.

Six providers are supported out of the box: ``anthropic``, ``openai``, ``google``, ``bedrock``,
``perplexity`` and ``ollama``.  Each lives in its own module and registers itself with
:func:`register_connector`; :func:`create_connector` picks one by provider id.

Additional providers can be added by subclassing :class:`BaseConnector` and registering it.
"""

from typing import (
    Any,
    Callable,
    Dict,
    Type,
)

from termagent.config import Settings
from termagent.connectors.base import BaseConnector
from termagent.core.errors import UnknownProviderError

# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CONNECTOR_REGISTRY: Dict[str, Type[BaseConnector]] = {}


def register_connector(name: str) -> Callable:
    """Decorator to register a connector class under *name*."""

    def wrapper(cls: Type[BaseConnector]) -> Type[BaseConnector]:
        cls.provider = name
        _CONNECTOR_REGISTRY[name] = cls
        return cls

    return wrapper


def available_providers() -> list[str]:
    return sorted(_CONNECTOR_REGISTRY)


def create_connector(
    provider: str, model_id: str | None = None, settings: Settings | None = None, **kwargs: Any
) -> BaseConnector:
    """
    Factory that returns an instantiated connector.

    An empty *model_id* selects the provider's default model.  An unknown *provider* raises
    :class:`UnknownProviderError` straight away.
    """
    cls = _CONNECTOR_REGISTRY.get((provider or "").lower())
    if cls is None:
        raise UnknownProviderError(provider)
    return cls(model_id, settings if settings is not None else Settings(), **kwargs)


# Adapters register themselves on import
from termagent.connectors import (  # noqa: E402  pylint: disable=wrong-import-position
    anthropic,
    bedrock,
    google,
    ollama,
    openai,
    perplexity,
)
