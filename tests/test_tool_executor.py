"""
Basic sanity tests for the tool dispatcher.

Run with:
$ pytest -q
"""

import pytest

from portalpilot.agent.tool_executor import (
    execute_tool,
    summarize_payload,
)
from portalpilot.core.schema import (
    ToolCall,
    ToolDeclaration,
    ToolStatus,
)
from portalpilot.tools import ToolRegistry


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()

    # These are stub tools for testing purposes.
    @reg.tool("add")
    async def _add(a: int, b: int) -> int:
        """Return the sum of two integers (used only for tests)."""
        return a + b

    @reg.tool("explode")
    async def _explode() -> None:
        """Always fails."""
        raise RuntimeError("CRM returned 502")

    return reg


async def test_execute_tool_success(registry: ToolRegistry) -> None:
    """Dispatcher should return the handler's value when the tool is valid."""
    result = await execute_tool(
        ToolCall(name="add", arguments={"a": 2, "b": 3}), registry.declarations(), registry
    )

    assert result.status is ToolStatus.SUCCESS
    assert result.payload == 5
    assert result.tool_name == "add"


async def test_execute_tool_unknown(registry: ToolRegistry) -> None:
    """A name outside the declared set yields an error result instead of raising."""
    result = await execute_tool(ToolCall(name="not_a_tool"), registry.declarations(), registry)

    assert result.status is ToolStatus.ERROR
    assert result.summary == "Unknown tool"
    assert result.payload == {"error": "Unknown tool"}


async def test_execute_tool_registered_but_not_declared(registry: ToolRegistry) -> None:
    """Only the declarations sent with the request count."""
    declared = [decl for decl in registry.declarations() if decl.name != "add"]

    call = ToolCall(name="add", arguments={"a": 1, "b": 1})

    result = await execute_tool(call, declared, registry)

    assert result.status is ToolStatus.ERROR
    assert result.summary == "Unknown tool"


async def test_execute_tool_declared_without_handler(registry: ToolRegistry) -> None:
    declared = [*registry.declarations(), ToolDeclaration(name="ghost", description="No handler")]

    result = await execute_tool(ToolCall(name="ghost"), declared, registry)

    assert result.status is ToolStatus.ERROR
    assert result.summary == "Unknown tool"


async def test_execute_tool_bad_args(registry: ToolRegistry) -> None:
    """Missing arguments produce an error result naming the problem."""
    result = await execute_tool(
        ToolCall(name="add", arguments={"a": 2}), registry.declarations(), registry
    )

    assert result.status is ToolStatus.ERROR
    assert "Invalid arguments" in result.summary


async def test_execute_tool_handler_failure(registry: ToolRegistry) -> None:
    """An exception in the handler is captured into the result."""
    result = await execute_tool(ToolCall(name="explode"), registry.declarations(), registry)

    assert result.status is ToolStatus.ERROR
    assert "CRM returned 502" in result.summary
    assert result.payload == {"error": result.summary}


def test_tool_call_decodes_stringified_arguments() -> None:
    call = ToolCall.model_validate({"name": "get_contact", "arguments": '{"id": "42"}'})
    assert call.arguments == {"id": "42"}
    assert ToolCall.model_validate({"name": "x", "arguments": ""}).arguments == {}


@pytest.mark.parametrize("raw", ["{a: 2, b: 3}", "[2, 3]", '"2, 3"'])
def test_tool_call_keeps_undecodable_arguments(raw: str) -> None:
    assert ToolCall.model_validate({"name": "add", "arguments": raw}).arguments == raw


async def test_execute_tool_rejects_non_object_arguments(registry: ToolRegistry) -> None:
    """Arguments that are not a JSON object fail this call only."""
    call = ToolCall.model_validate({"name": "add", "arguments": "{a: 2, b: 3}"})

    result = await execute_tool(call, registry.declarations(), registry)

    assert result.status is ToolStatus.ERROR
    assert result.summary == "Invalid arguments for tool 'add': expected a JSON object"


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"count": 5, "items": [1, 2, 3, 4, 5]}, "5 items"),
        ({"workflows": [1, 2]}, "2 items"),
        ([1, 2, 3], "3 items"),
        ({"a": 1, "b": 2}, "2 fields"),
        (None, "No data"),
        (5, "5"),
    ],
)
def test_summarize_payload(payload, expected: str) -> None:
    assert summarize_payload(payload) == expected
