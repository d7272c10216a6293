"""Dispatches tool calls to a :class:`~portalpilot.tools.ToolRegistry` and wraps errors."""

import inspect
import logging
from typing import (
    Any,
    Iterable,
)

from portalpilot.core.schema import (
    ToolCall,
    ToolDeclaration,
    ToolResult,
    ToolStatus,
)
from portalpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)


def summarize_payload(payload: Any) -> str:
    """One-line description of a tool payload for display."""
    if payload is None:
        return "No data"
    if isinstance(payload, list):
        return f"{len(payload)} items"
    if isinstance(payload, dict):
        count = payload.get("count")
        if isinstance(count, int) and not isinstance(count, bool):
            return f"{count} items"
        for value in payload.values():
            if isinstance(value, list):
                return f"{len(value)} items"
        return f"{len(payload)} fields"
    text = str(payload)
    return text if len(text) <= 80 else text[:77] + "..."


def _error(name: str, message: str) -> ToolResult:
    return ToolResult(
        tool_name=name,
        status=ToolStatus.ERROR,
        summary=message,
        payload={"error": message},
    )


async def execute_tool(
    call: ToolCall,
    declared: Iterable[ToolDeclaration],
    registry: ToolRegistry,
) -> ToolResult:
    """
    Look up ``call.name`` among *declared* tools and run its handler from *registry*.

    Parameters
    ----------
    call:
        The tool call issued by the model.
    declared:
        Declarations sent with the request that produced *call*; any other name is unknown.
    registry:
        Where handlers are looked up.

    Returns
    -------
    ToolResult
        Success with the handler's payload, or an error result.  Never raises.
    """
    if call.name not in {decl.name for decl in declared}:
        logger.warning("Model requested undeclared tool '%s'", call.name)
        return _error(call.name, "Unknown tool")

    entry = registry.get(call.name)
    if entry is None:
        logger.error("Tool '%s' is declared but has no handler", call.name)
        return _error(call.name, "Unknown tool")

    if not isinstance(call.arguments, dict):
        logger.warning("Undecodable arguments for tool '%s': %r", call.name, call.arguments)
        return _error(
            call.name, f"Invalid arguments for tool '{call.name}': expected a JSON object"
        )

    try:
        inspect.signature(entry.handler).bind(**call.arguments)
    except TypeError as exc:
        logger.warning("Argument error for tool '%s': %s", call.name, exc)
        return _error(call.name, f"Invalid arguments for tool '{call.name}': {exc}")

    try:
        logger.debug("Executing tool '%s' with args=%s", call.name, call.arguments)
        payload = await entry.handler(**call.arguments)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Unhandled error in tool '%s'", call.name)
        return _error(call.name, f"Tool '{call.name}' failed: {exc}")

    logger.info("Tool '%s' completed", call.name)
    return ToolResult(
        tool_name=call.name,
        status=ToolStatus.SUCCESS,
        summary=summarize_payload(payload),
        payload=payload,
    )
