"""
Schema definitions for the Co-Pilot core.

These data models serve as the contract between the generation client, the agent loop, the tool
dispatcher and whatever renders the conversation.  We keep them separate from runtime logic so they
can be imported anywhere without side-effects.
"""

import json
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


class Mode(str, Enum):
    """Interaction mode; selects the output schema bound to a request."""

    CHAT = "chat"
    OPTIMIZE = "optimize"
    AUDIT = "audit"


class PromptRequest(BaseModel):
    """One generation request, built per user action."""

    model_config = ConfigDict(frozen=True)

    mode: Mode
    text: str = Field(..., min_length=1)
    context_tag: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt text must not be blank")
        return value


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
class ToolParameter(BaseModel):
    """A single named parameter of a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    required: bool = True
    description: str = ""


class ToolDeclaration(BaseModel):
    """What the backend is told about a callable tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()


class ToolCall(BaseModel):
    """A call that the model wants the agent to execute."""

    name: str = Field(..., description="Declared tool name")
    arguments: Union[Dict[str, Any], str] = Field(
        default_factory=dict,
        description="Keyword arguments for the tool; the raw text when it is not a JSON object",
    )

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_arguments(cls, value: Any) -> Any:
        # Backends that cannot express free-form objects send the arguments as a JSON string.
        # Undecodable text is kept as-is so the dispatcher can reject this one call.
        if value is None or (isinstance(value, str) and not value.strip()):
            return {}
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return value
            return decoded if isinstance(decoded, dict) else value
        return value


class ToolStatus(str, Enum):
    """Outcome of one tool call."""

    SUCCESS = "success"
    ERROR = "error"


class ToolResult(BaseModel):
    """Result of one dispatched tool call; immutable history once created."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    status: ToolStatus
    summary: str
    payload: Any = None

    @property
    def ok(self) -> bool:
        """True when the handler completed without error."""
        return self.status is ToolStatus.SUCCESS


# ---------------------------------------------------------------------------
# Conversation turns
# ---------------------------------------------------------------------------
class UserTurn(BaseModel):
    """A message typed by the user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    text: str


class AssistantTurn(BaseModel):
    """A message produced by the model."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"
    text: str
    suggestions: tuple[str, ...] = ()
    plan: Optional[Dict[str, Any]] = None  # validated optimize/audit plan, if any


class ToolTurn(BaseModel):
    """The visible result of one tool call."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tool"] = "tool"
    result: ToolResult


ConversationTurn = Annotated[
    Union[UserTurn, AssistantTurn, ToolTurn], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Generation outcomes
# ---------------------------------------------------------------------------
class FailureKind(str, Enum):
    """Why a generation call ended without a usable value."""

    QUOTA_EXHAUSTED = "quota_exhausted"
    BACKEND_ERROR = "backend_error"
    INVALID_OUTPUT = "invalid_output"


class GenerationOk(BaseModel):
    """A response that parsed and validated against the declared schema."""

    model_config = ConfigDict(frozen=True)

    value: BaseModel  # instance of the schema model bound to the request mode
    attempts: int = 1

    @property
    def data(self) -> Dict[str, Any]:
        """The validated value in its wire shape."""
        return self.value.model_dump(by_alias=True, exclude_none=True)


class RetryableFailure(BaseModel):
    """A throttled attempt; never leaves the generation client."""

    model_config = ConfigDict(frozen=True)

    reason: str
    attempt: int


class FatalFailure(BaseModel):
    """Terminal failure, suitable for display."""

    model_config = ConfigDict(frozen=True)

    reason: str
    kind: FailureKind = FailureKind.BACKEND_ERROR
    attempts: int = 1
    raw_text: Optional[str] = None  # offending output, kept for diagnostics only


GenerationOutcome = Union[GenerationOk, RetryableFailure, FatalFailure]

