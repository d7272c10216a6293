"""
Append-only conversation log.

A :class:`Conversation` is owned by the session layer.  The agent loop only ever appends to it;
turns are never edited, removed or reordered, so an observer always sees a consistent prefix of
what eventually happens.  Observers either subscribe for a callback per appended turn or poll with
:meth:`Conversation.since`.
"""

import logging
from typing import (
    Callable,
    Iterator,
    List,
)

from portalpilot.core.schema import (
    AssistantTurn,
    ConversationTurn,
    ToolTurn,
    UserTurn,
)

logger = logging.getLogger(__name__)

TurnListener = Callable[[int, ConversationTurn], None]


class ConversationClosedError(RuntimeError):
    """Raised when appending to a conversation that has been closed."""


class Conversation:
    """Ordered, append-only sequence of turns."""

    def __init__(self) -> None:
        self._turns: List[ConversationTurn] = []
        self._listeners: List[TurnListener] = []
        self._closed = False

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #
    def append(self, turn: ConversationTurn) -> int:
        """Append *turn* and return its index."""
        if self._closed:
            raise ConversationClosedError("Conversation is closed; no further turns accepted.")
        self._turns.append(turn)
        index = len(self._turns) - 1
        for listener in list(self._listeners):
            try:
                listener(index, turn)
            except Exception:  # pylint: disable=broad-except
                # A broken observer must not stop the loop from committing turns.
                logger.exception("Conversation listener failed on turn %d", index)
        return index

    def close(self) -> None:
        """Stop accepting turns; already committed turns stay readable."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Observing
    # ------------------------------------------------------------------ #
    def subscribe(self, listener: TurnListener) -> Callable[[], None]:
        """Call *listener* for every turn appended from now on; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def since(self, index: int) -> tuple[ConversationTurn, ...]:
        """Turns appended at or after *index*."""
        return tuple(self._turns[index:])

    def render_history(self, limit: int = 6) -> str:
        """Plain-text rendering of the last *limit* turns, oldest first, for prompt context."""
        lines = []
        for turn in self._turns[-limit:] if limit > 0 else []:
            if isinstance(turn, UserTurn):
                lines.append(f"User: {turn.text}")
            elif isinstance(turn, AssistantTurn):
                lines.append(f"Assistant: {turn.text}")
            elif isinstance(turn, ToolTurn):
                result = turn.result
                lines.append(f"Tool [{result.tool_name}] {result.status.value}: {result.summary}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

    def __getitem__(self, index: int) -> ConversationTurn:
        return self._turns[index]
