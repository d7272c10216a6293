"""
Pydantic models for the Portal Pilot API.
This module defines the request and response schemas used by the HTTP layer.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
    field_validator,
)

from portalpilot.agent.agent_loop import TurnStatus
from portalpilot.core.schema import (
    ConversationTurn,
    FailureKind,
    Mode,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the Co-Pilot")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    mode: Mode = Field(Mode.CHAT, description="Interaction mode")
    context_tag: Optional[str] = Field(
        None, description="What the request is about, e.g. workflow or sequence"
    )

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    session_id: str
    status: TurnStatus
    reply: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    turns: List[ConversationTurn] = Field(
        default_factory=list, description="Turns appended while handling this message"
    )


class TurnsResponse(BaseModel):
    """Conversation turns from a given index on."""

    session_id: str
    since: int
    turns: List[ConversationTurn]
