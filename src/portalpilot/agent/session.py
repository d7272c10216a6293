"""
Session layer: owns one conversation per session and starts the agent loop for it.

Only one turn runs per session at a time; a message submitted while a turn is in flight is rejected
with :class:`SessionBusyError` rather than interleaved.  Closing a session stops it from accepting
turns and abandons whatever generation or tool call is in flight.
"""

import asyncio
import logging
import uuid
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Dict,
    List,
    Optional,
)

from portalpilot.agent.agent_loop import (
    AgentLoop,
    TurnResult,
    TurnStatus,
)
from portalpilot.agent.conversation import Conversation
from portalpilot.agent.generation_client import (
    GenerationClient,
    build_generation_client,
)
from portalpilot.config import Settings
from portalpilot.core.schema import Mode
from portalpilot.tools import ToolRegistry
from portalpilot.tools.hubspot import (
    HubSpotClient,
    register_hubspot_tools,
)

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised for an unknown or closed session id."""


class SessionBusyError(RuntimeError):
    """Raised when a message arrives while the session's previous turn is still running."""


@dataclass
class Session:
    """One chat session: its conversation and the loop that appends to it."""

    session_id: str
    loop: AgentLoop
    conversation: Conversation = field(default_factory=Conversation)
    task: Optional["asyncio.Task[TurnResult]"] = None
    last_result: Optional[TurnResult] = None

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()


class SessionManager:
    """Creates sessions and routes user messages into their agent loops."""

    def __init__(
        self,
        client: GenerationClient,
        registry: ToolRegistry,
        max_tool_rounds: int = 1,
        hubspot: HubSpotClient | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds
        self._hubspot = hubspot
        self._sessions: Dict[str, Session] = {}

    def create_session(self) -> str:
        """Open a new session and return its id."""
        session_id = str(uuid.uuid4())
        loop = AgentLoop(self.client, self.registry, max_tool_rounds=self.max_tool_rounds)
        self._sessions[session_id] = Session(session_id=session_id, loop=loop)
        logger.info("Created session %s", session_id)
        return session_id

    def get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError as exc:
            raise SessionNotFoundError(session_id) from exc

    def list_sessions(self) -> List[str]:
        return list(self._sessions)

    async def submit_user_message(
        self,
        session_id: str,
        text: str,
        mode: Mode = Mode.CHAT,
        context_tag: Optional[str] = None,
    ) -> TurnResult:
        """
        Append *text* to the session and run the agent loop until the turn ends.

        Raises
        ------
        SessionNotFoundError
            If *session_id* is unknown or closed.
        SessionBusyError
            If the session's previous turn has not finished.
        """
        session = self.get(session_id)
        if session.busy:
            raise SessionBusyError(f"Session {session_id} is still processing a message.")

        start = len(session.conversation)
        task = asyncio.create_task(
            session.loop.run_turn(session.conversation, text, mode=mode, context_tag=context_tag)
        )
        session.task = task
        try:
            # Shielded so a dropped caller does not abandon the turn; close_session does that.
            turn_result = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            turn_result = TurnResult(
                status=TurnStatus.CANCELLED,
                first_index=start,
                appended=len(session.conversation) - start,
            )
        session.last_result = turn_result
        return turn_result

    def close_session(self, session_id: str) -> None:
        """Stop *session_id* from accepting turns and abandon any turn in flight."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.conversation.close()
        if session.busy and session.task is not None:
            session.task.cancel()
        logger.info("Closed session %s", session_id)

    async def aclose(self) -> None:
        """Close every session and release backend connections."""
        for session_id in list(self._sessions):
            self.close_session(session_id)
        await self.client.backend.close()
        if self._hubspot is not None:
            await self._hubspot.aclose()


def build_tool_registry(settings: Settings) -> tuple[ToolRegistry, HubSpotClient | None]:
    """Registry with the CRM tools when an access token is configured."""
    registry = ToolRegistry()
    if not settings.HUBSPOT_ACCESS_TOKEN:
        logger.warning("HUBSPOT_ACCESS_TOKEN not set; CRM tools are disabled.")
        return registry, None

    hubspot = HubSpotClient(
        settings.HUBSPOT_ACCESS_TOKEN,
        base_url=settings.HUBSPOT_BASE_URL,
        timeout=settings.HUBSPOT_TIMEOUT,
    )
    register_hubspot_tools(registry, hubspot)
    registry.validate(registry.declarations())
    return registry, hubspot


def build_session_manager(settings: Settings) -> SessionManager:
    """Assemble the generation client, tool registry and session manager from *settings*."""
    registry, hubspot = build_tool_registry(settings)
    return SessionManager(
        build_generation_client(settings),
        registry,
        max_tool_rounds=settings.MAX_TOOL_ROUNDS,
        hubspot=hubspot,
    )
