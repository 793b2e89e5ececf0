"""
Tool registry for the terminal agent.

This module provides the :class:`Tool` base class, a decorator to register built-in tools, and the
:class:`ToolRegistry` that the agent looks tools up in by name.

Built-in tools are registered as classes, so they can be instantiated with the run-time settings:
    @register_builtin("my_tool")
    class MyTool(Tool):
        ...

A registry is assembled once at startup by :func:`build_registry`.  It merges, in order, the
built-in tools and any tools discovered from capability servers; a later tool with the same name
replaces the earlier one.  After construction the registry is only read, so concurrent tasks may
share it.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    Mapping,
    Tuple,
    Type,
)

from termagent.config import Settings
from termagent.core.errors import (
    InvalidArgumentsError,
    SchemaConversionError,
)

logger = logging.getLogger(__name__)

BUILTIN_TOOLS: Dict[str, Type["Tool"]] = {}
"""Global registry of built-in tool classes."""

JSON_TYPES = ("string", "integer", "number", "boolean", "array", "object")

_PY_TYPES: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def register_builtin(name: str) -> Any:
    """
    Register a built-in tool class under *name*.

    Parameters
    ----------
    name: str
        The name of the tool.  This must be unique among built-in tools.
    Returns
    -------
    Callable
        A class decorator that records the class in :data:`BUILTIN_TOOLS`.
    Raises
    ------
    ValueError
        If a built-in tool with the same name is already registered.
    """
    if name in BUILTIN_TOOLS:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering built-in tool '%s'", name)

    def wrapper(cls: Type["Tool"]) -> Type["Tool"]:
        BUILTIN_TOOLS[name] = cls
        return cls

    return wrapper


def iter_properties(
    schema: Mapping[str, Any] | None, provider: str = "schema"
) -> Iterator[Tuple[str, Mapping[str, Any], bool]]:
    """
    Walk a flat object schema, yielding ``(name, property, required)`` per property.

    Only scalar properties and arrays of scalars can be declared to every backend.  Nested object
    properties and arrays of objects raise :class:`SchemaConversionError` here, before any request
    is sent.
    """
    if schema is None:
        raise SchemaConversionError(provider, "input schema is missing")
    if schema.get("type") != "object":
        raise SchemaConversionError(provider, "input schema is not of type object")

    required = set(schema.get("required") or ())
    properties = schema.get("properties") or {}
    for prop_name, prop in properties.items():
        if not isinstance(prop, Mapping):
            raise SchemaConversionError(provider, f"property '{prop_name}' is not an object")
        prop_type = prop.get("type", "string")
        if prop_type not in JSON_TYPES:
            raise SchemaConversionError(
                provider, f"property '{prop_name}' has unsupported type '{prop_type}'"
            )
        if prop_type == "object":
            raise SchemaConversionError(
                provider, f"nested object property '{prop_name}' is not supported"
            )
        if prop_type == "array":
            item_type = (prop.get("items") or {}).get("type", "string")
            if item_type in ("object", "array") or item_type not in JSON_TYPES:
                raise SchemaConversionError(
                    provider, f"array property '{prop_name}' has unsupported items '{item_type}'"
                )
        yield prop_name, prop, prop_name in required


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class Tool(ABC):
    """A named, schema-described capability the model can invoke."""

    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}

    @property
    def help_text(self) -> str:
        """Human-readable help shown by ``tool help``."""
        lines = [f"Help for {self.name}: {self.description}", "", "Arguments:"]
        required = set(self.input_schema.get("required") or ())
        for prop_name, prop in (self.input_schema.get("properties") or {}).items():
            flag = " (required)" if prop_name in required else ""
            lines.append(
                f"  {prop_name}: {prop.get('type', 'string')}{flag} - {prop.get('description', '')}"
            )
        return "\n".join(lines)

    def validate(self, args: Any) -> Dict[str, Any]:
        """Check *args* against :attr:`input_schema` and return them as a plain dict."""
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise InvalidArgumentsError(self.name, f"Arguments for '{self.name}' must be an object")

        properties = self.input_schema.get("properties") or {}
        for req in self.input_schema.get("required") or ():
            if req not in args:
                raise InvalidArgumentsError(
                    self.name, f"Invalid arguments for tool '{self.name}': missing '{req}'"
                )
        for key, value in args.items():
            expected = (properties.get(key) or {}).get("type")
            if expected is None:
                continue
            accepted = _PY_TYPES.get(expected, (object,))
            # bool is an int subclass, but not a JSON integer/number
            if isinstance(value, bool) and expected != "boolean":
                accepted = ()
            if not isinstance(value, accepted):
                raise InvalidArgumentsError(
                    self.name,
                    f"Invalid arguments for tool '{self.name}': '{key}' must be {expected}, "
                    f"got {type(value).__name__}",
                )
        return dict(args)

    async def __call__(self, args: Mapping[str, Any] | None = None) -> str:
        """Validate *args* then run the tool."""
        return await self.run(self.validate(args))

    @abstractmethod
    async def run(self, args: Dict[str, Any]) -> str:
        """Execute the tool with already validated *args* and return its text output."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Name -> :class:`Tool` mapping; the last registration of a name wins."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.debug("Tool '%s' replaced by a later registration", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all(self) -> Dict[str, Tool]:
        return dict(self._tools)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_registry(
    settings: Settings,
    extra_tools: Iterable[Tool] = (),
    *,
    builtins: Mapping[str, Type[Tool]] | None = None,
) -> ToolRegistry:
    """Instantiate the built-in tools, then layer *extra_tools* (e.g. MCP tools) on top."""
    registry = ToolRegistry()
    for name, cls in (BUILTIN_TOOLS if builtins is None else builtins).items():
        logger.debug("Loading built-in tool '%s'", name)
        registry.register(cls(settings))
    for tool in extra_tools:
        registry.register(tool)
    return registry


# Built-in tools register themselves on import
from termagent.tools import (  # noqa: E402  pylint: disable=wrong-import-position
    unix,
    websearch,
)
