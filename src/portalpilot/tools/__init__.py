"""
Tool registry for the Co-Pilot.

A :class:`ToolRegistry` maps a tool name to its declaration (what the backend is told) and its async
handler (what the dispatcher runs).  Both are registered in one step, so the set of names the model
is told about and the set of names that can be dispatched cannot drift apart.

Tools are registered with a decorator::

    registry = ToolRegistry()

    @registry.tool("list_workflows", "Retrieve all automation workflows in the portal.")
    async def list_workflows() -> dict:
        ...

The parameter shape is read from the handler signature unless given explicitly.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    Optional,
    Sequence,
    get_type_hints,
)

from portalpilot.core.schema import (
    ToolDeclaration,
    ToolParameter,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]

_TYPE_NAMES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class ToolRegistrationError(ValueError):
    """Raised when a tool cannot be registered or declarations lack a handler."""


@dataclass(frozen=True)
class RegisteredTool:
    """A declaration together with the handler that serves it."""

    declaration: ToolDeclaration
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.declaration.name


def describe_parameters(fn: Callable) -> tuple[ToolParameter, ...]:
    """Extract parameter information from a handler signature."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    params = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        param_type = type_hints.get(param_name, str)
        params.append(
            ToolParameter(
                name=param_name,
                type=_TYPE_NAMES.get(param_type, "string"),
                required=param.default is inspect.Parameter.empty,
            )
        )
    return tuple(params)


class ToolRegistry:
    """Name -> (declaration, handler) table, in registration order."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        description: Optional[str] = None,
        parameters: Optional[Sequence[ToolParameter]] = None,
    ) -> RegisteredTool:
        """
        Register *handler* under *name*.

        Raises
        ------
        ToolRegistrationError
            If *name* is already taken or *handler* is not a coroutine function.
        """
        if name in self._tools:
            raise ToolRegistrationError(f"Tool '{name}' is already registered.")
        if not inspect.iscoroutinefunction(handler):
            raise ToolRegistrationError(f"Handler for tool '{name}' must be an async function.")

        if parameters is None:
            parameters = describe_parameters(handler)
        declaration = ToolDeclaration(
            name=name,
            description=description or inspect.getdoc(handler) or "",
            parameters=tuple(parameters),
        )
        entry = RegisteredTool(declaration=declaration, handler=handler)
        self._tools[name] = entry
        logger.debug("Registering tool '%s'", name)
        return entry

    def tool(self, name: str, description: Optional[str] = None) -> Callable:
        """Decorator form of :meth:`register`."""

        def wrapper(fn: ToolHandler) -> ToolHandler:
            self.register(name, fn, description)
            return fn

        return wrapper

    def get(self, name: str) -> Optional[RegisteredTool]:
        """Return the entry for *name*, or ``None``."""
        return self._tools.get(name)

    def declarations(self) -> tuple[ToolDeclaration, ...]:
        """Declarations of every registered tool, in registration order."""
        return tuple(entry.declaration for entry in self._tools.values())

    def validate(self, declared: Iterable[ToolDeclaration]) -> None:
        """Check that every name in *declared* has a handler here."""
        missing = sorted({decl.name for decl in declared} - set(self._tools))
        if missing:
            raise ToolRegistrationError(f"Declared tools without a handler: {', '.join(missing)}")

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[RegisteredTool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
