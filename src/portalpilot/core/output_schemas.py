"""
Schema registry: the output shape each interaction mode must produce.

Every :class:`~portalpilot.core.schema.Mode` has exactly one :class:`OutputSchema`.  An entry pairs
the pydantic model used to validate what the backend returns with the response schema that is
sent to the backend to constrain it (Gemini's ``OBJECT`` / ``STRING`` / ``ARRAY`` dialect).  Adding
a mode is a new entry in :data:`SCHEMA_REGISTRY`, nothing else.
"""

import copy
import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from portalpilot.core.schema import (
    AssistantTurn,
    Mode,
    ToolCall,
    ToolDeclaration,
)


# ---------------------------------------------------------------------------
# Validation models
# ---------------------------------------------------------------------------
class StructuredReply(BaseModel):
    """Base for every validated backend reply."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    def requested_tools(self) -> List[ToolCall]:
        """Tool calls the model asked for, in the order it listed them."""
        return []

    def assistant_turn(self) -> AssistantTurn:
        """The conversational turn this reply renders as."""
        raise NotImplementedError


class ChatReply(StructuredReply):
    """Conversational answer, optionally asking for tools."""

    text: str
    suggestions: List[str]
    tool_calls: List[ToolCall] = Field(default_factory=list, alias="toolCalls")

    def requested_tools(self) -> List[ToolCall]:
        return list(self.tool_calls)

    def assistant_turn(self) -> AssistantTurn:
        return AssistantTurn(text=self.text, suggestions=tuple(self.suggestions))


class ApiCall(BaseModel):
    """A proposed write against the CRM proxy."""

    model_config = ConfigDict(strict=True)

    method: str
    path: str
    body: Optional[Any] = None
    description: Optional[str] = None

    @field_validator("body", mode="before")
    @classmethod
    def _decode_body(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip():
            return json.loads(value)
        return value or None


class PlanSpec(BaseModel):
    """The body of an optimization plan."""

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="allow")

    title: str
    yaml: Optional[str] = None
    json_text: Optional[str] = Field(None, alias="json")
    api_calls: List[ApiCall] = Field(default_factory=list, alias="apiCalls")
    steps: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class OptimizationPlan(StructuredReply):
    """Structured plan returned in optimize and audit modes."""

    spec_type: str = Field(..., alias="specType")
    spec: PlanSpec
    analysis: str
    diff: List[str]

    def assistant_turn(self) -> AssistantTurn:
        return AssistantTurn(
            text=self.analysis,
            suggestions=tuple(self.diff),
            plan=self.model_dump(by_alias=True, exclude_none=True),
        )


# ---------------------------------------------------------------------------
# Backend-facing response schemas
# ---------------------------------------------------------------------------
_STRING_LIST: Mapping[str, Any] = {"type": "ARRAY", "items": {"type": "STRING"}}

CHAT_RESPONSE_SCHEMA: Mapping[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "text": {"type": "STRING", "description": "Conversational response."},
        "suggestions": {**_STRING_LIST, "description": "Short follow-up prompts."},
    },
    "required": ["text", "suggestions"],
}

PLAN_RESPONSE_SCHEMA: Mapping[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "specType": {
            "type": "STRING",
            "description": (
                "One of: workflow_spec, sequence_spec, property_migration_spec, breeze_tool_spec."
            ),
        },
        "spec": {
            "type": "OBJECT",
            "properties": {
                "title": {"type": "STRING"},
                "yaml": {"type": "STRING"},
                "json": {"type": "STRING"},
                "apiCalls": {
                    "type": "ARRAY",
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "method": {"type": "STRING"},
                            "path": {"type": "STRING"},
                            "body": {
                                "type": "STRING",
                                "description": "Stringified JSON object of the request body",
                            },
                            "description": {"type": "STRING"},
                        },
                        "required": ["method", "path"],
                    },
                },
                "steps": _STRING_LIST,
                "notes": _STRING_LIST,
            },
            "required": ["title"],
        },
        "analysis": {"type": "STRING"},
        "diff": _STRING_LIST,
    },
    "required": ["specType", "spec", "analysis", "diff"],
}


def tool_calls_schema(tools: Sequence[ToolDeclaration]) -> Dict[str, Any]:
    """Schema fragment for a ``toolCalls`` array restricted to *tools*."""
    return {
        "type": "ARRAY",
        "description": "Tools to run before answering, in the order they should run.",
        "items": {
            "type": "OBJECT",
            "properties": {
                "name": {
                    "type": "STRING",
                    "format": "enum",
                    "enum": [tool.name for tool in tools],
                },
                "arguments": {
                    "type": "STRING",
                    "description": "Stringified JSON object of the tool arguments",
                },
            },
            "required": ["name"],
        },
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OutputSchema:
    """The output contract bound to one mode."""

    mode: Mode
    model: Type[StructuredReply]
    schema: Mapping[str, Any]
    instruction: str
    accepts_tools: bool = False

    @property
    def required_fields(self) -> tuple[str, ...]:
        """Top-level fields every valid reply must carry."""
        return tuple(self.schema.get("required", ()))

    def response_schema(self, tools: Sequence[ToolDeclaration] = ()) -> Dict[str, Any]:
        """Schema to attach to a backend call, extended with *tools* where the mode allows it."""
        schema: Dict[str, Any] = copy.deepcopy(dict(self.schema))
        if self.accepts_tools and tools:
            schema["properties"]["toolCalls"] = tool_calls_schema(tools)
        return schema

    def validate(self, text: str) -> StructuredReply:
        """Parse *text* as this schema's model; raises ``pydantic.ValidationError``."""
        return self.model.model_validate_json(text)


_CHAT_INSTRUCTION = """\
You are the CRM Co-Pilot, an operations assistant for a HubSpot portal.
Answer conversationally and offer a few short follow-up suggestions.
When portal data would help, list the tools to run in toolCalls instead of guessing.
Return only JSON matching the response schema.
"""

_PLAN_INSTRUCTION = """\
You are the CRM Co-Pilot, an operations assistant for a HubSpot portal.
Produce a structured {kind} plan: a spec with a title, an analysis, and a short, actionable diff.
If write actions are possible, include spec.apiCalls; each body is a JSON string, not an object.
Return only JSON matching the response schema.
"""

SCHEMA_REGISTRY: Mapping[Mode, OutputSchema] = MappingProxyType(
    {
        Mode.CHAT: OutputSchema(
            mode=Mode.CHAT,
            model=ChatReply,
            schema=CHAT_RESPONSE_SCHEMA,
            instruction=_CHAT_INSTRUCTION,
            accepts_tools=True,
        ),
        Mode.OPTIMIZE: OutputSchema(
            mode=Mode.OPTIMIZE,
            model=OptimizationPlan,
            schema=PLAN_RESPONSE_SCHEMA,
            instruction=_PLAN_INSTRUCTION.format(kind="optimization"),
        ),
        Mode.AUDIT: OutputSchema(
            mode=Mode.AUDIT,
            model=OptimizationPlan,
            schema=PLAN_RESPONSE_SCHEMA,
            instruction=_PLAN_INSTRUCTION.format(kind="audit"),
        ),
    }
)


def get_output_schema(mode: Mode | str) -> OutputSchema:
    """Look up the schema bound to *mode*."""
    try:
        return SCHEMA_REGISTRY[Mode(mode)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"No output schema registered for mode '{mode}'.") from exc
