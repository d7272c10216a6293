"""Main orchestration loop for the Co-Pilot."""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    List,
    Optional,
    Sequence,
)

from portalpilot.agent.conversation import Conversation
from portalpilot.agent.generation_client import GenerationClient
from portalpilot.agent.tool_executor import execute_tool
from portalpilot.core.output_schemas import get_output_schema
from portalpilot.core.schema import (
    ConversationTurn,
    FailureKind,
    FatalFailure,
    Mode,
    PromptRequest,
    ToolResult,
    ToolTurn,
    UserTurn,
)
from portalpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

_TOOL_PAYLOAD_CHARS = 2000


class LoopState(str, Enum):
    """Where the loop is within one user turn."""

    IDLE = "idle"
    AWAITING_GENERATION = "awaiting_generation"
    AWAITING_TOOL_EXECUTION = "awaiting_tool_execution"


class TurnStatus(str, Enum):
    """How one user turn ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TurnResult:
    """Summary of one run of the loop; the turns themselves live in the conversation."""

    status: TurnStatus
    first_index: int
    appended: int
    tool_rounds: int = 0
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.COMPLETED


def _render_tool_results(results: Sequence[ToolResult]) -> str:
    lines = []
    for result in results:
        payload = json.dumps(result.payload, default=str)
        if len(payload) > _TOOL_PAYLOAD_CHARS:
            payload = payload[:_TOOL_PAYLOAD_CHARS] + "..."
        lines.append(f"[{result.tool_name}] {result.status.value}: {result.summary}\n{payload}")
    return "\n\n".join(lines)


class AgentLoop:
    """
    Drives one user turn: generate, run any requested tools in order, append everything to the
    conversation.

    One loop serves one session at a time; :attr:`busy` is true while a turn is in flight.  With
    ``max_tool_rounds=1`` (the default) the loop stops after the first batch of tool calls and lets
    the tool turns stand as the answer.  Higher values feed the results back into another
    generation round until the model stops asking for tools or the budget runs out.
    """

    def __init__(
        self,
        client: GenerationClient,
        registry: ToolRegistry,
        max_tool_rounds: int = 1,
        history_turns: int = 6,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self.client = client
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds
        self.history_turns = history_turns
        self.state = LoopState.IDLE

    @property
    def busy(self) -> bool:
        return self.state is not LoopState.IDLE

    @staticmethod
    def _build_prompt_text(
        user_msg: str, history: str, tool_results: Sequence[ToolResult] = ()
    ) -> str:
        prompt_parts: List[str] = []
        if history:
            prompt_parts.append("PREVIOUS CONVERSATION:\n" + history)
        if tool_results:
            prompt_parts.append("TOOL RESULTS:\n" + _render_tool_results(tool_results))
        if not prompt_parts:
            return user_msg
        return "\n\n".join(prompt_parts) + f"\n\nCURRENT QUERY:\n{user_msg}"

    @staticmethod
    def _commit(conversation: Conversation, turn: ConversationTurn) -> bool:
        """Append *turn* unless the conversation was closed meanwhile."""
        if conversation.closed:
            return False
        conversation.append(turn)
        return True

    async def run_turn(
        self,
        conversation: Conversation,
        text: str,
        mode: Mode = Mode.CHAT,
        context_tag: Optional[str] = None,
    ) -> TurnResult:
        """
        Append *text* as a user turn and drive the loop until it is done.

        Generation-level failures end the turn with ``TurnStatus.FAILED``; turns committed before
        the failure stay in the conversation.  Tool failures never end the turn.
        """
        if self.busy:
            raise RuntimeError("Agent loop is already running a turn.")
        if not text.strip():
            raise ValueError("Message text must not be blank.")

        schema = get_output_schema(mode)
        tools = self.registry.declarations() if schema.accepts_tools else ()
        history = conversation.render_history(self.history_turns)
        first_index = conversation.append(UserTurn(text=text))

        def result(
            status: TurnStatus, rounds: int, failure: FatalFailure | None = None
        ) -> TurnResult:
            return TurnResult(
                status=status,
                first_index=first_index,
                appended=len(conversation) - first_index,
                tool_rounds=rounds,
                error=failure.reason if failure else None,
                error_kind=failure.kind if failure else None,
            )

        tool_results: List[ToolResult] = []
        rounds = 0
        try:
            while True:
                self.state = LoopState.AWAITING_GENERATION
                request = PromptRequest(
                    mode=mode,
                    text=self._build_prompt_text(text, history, tool_results),
                    context_tag=context_tag,
                )
                outcome = await self.client.generate(request, schema, tools)
                if isinstance(outcome, FatalFailure):
                    logger.error("Turn failed [%s]: %s", outcome.kind.value, outcome.reason)
                    return result(TurnStatus.FAILED, rounds, outcome)

                reply = outcome.value
                calls = reply.requested_tools()
                assistant = reply.assistant_turn()
                if assistant.text or not calls:
                    if not self._commit(conversation, assistant):
                        return result(TurnStatus.CANCELLED, rounds)
                if not calls:
                    break

                rounds += 1
                self.state = LoopState.AWAITING_TOOL_EXECUTION
                logger.info(
                    "Model requested %d tool calls: %s", len(calls), [call.name for call in calls]
                )
                # Strictly one at a time, in the order the model listed them.
                for call in calls:
                    if conversation.closed:
                        return result(TurnStatus.CANCELLED, rounds)
                    tool_result = await execute_tool(call, tools, self.registry)
                    if not self._commit(conversation, ToolTurn(result=tool_result)):
                        return result(TurnStatus.CANCELLED, rounds)
                    tool_results.append(tool_result)

                if rounds >= self.max_tool_rounds:
                    break
        except asyncio.CancelledError:
            logger.info("Turn cancelled after %d tool rounds", rounds)
            raise
        finally:
            self.state = LoopState.IDLE

        return result(TurnStatus.COMPLETED, rounds)
