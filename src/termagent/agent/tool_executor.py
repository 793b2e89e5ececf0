"""Dispatches tool calls to a :class:`~termagent.tools.ToolRegistry` and wraps errors."""

import logging
from typing import (
    Any,
    Dict,
)

from termagent.core.errors import (
    ToolExecutionError,
    ToolNotFoundError,
)
from termagent.tools import ToolRegistry

logger = logging.getLogger(__name__)


async def execute_tool(
    registry: ToolRegistry, name: str, args: Dict[str, Any] | None = None
) -> str:
    """
    Look up *name* in *registry* and invoke it with *args*.

    Parameters
    ----------
    registry:
        The catalogue to dispatch against.
    name:
        The registered tool name.
    args:
        Arguments to validate against the tool's input schema and pass to it.  If *None*, an
        empty dict is assumed.

    Returns
    -------
    str
        The tool's text output.

    Raises
    ------
    ToolNotFoundError
        If the tool is not registered.  Nothing is executed.
    ToolExecutionError
        If the arguments are invalid (:class:`InvalidArgumentsError`) or the tool fails.
    """

    if args is None:
        args = {}

    tool = registry.get(name)
    if tool is None:
        raise ToolNotFoundError(name)

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return await tool(args)
    except ToolExecutionError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(name, f"Tool '{name}' raised an error: {exc}") from exc
