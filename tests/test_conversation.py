"""Tests for the append-only conversation log."""

from typing import (
    List,
    Tuple,
)

import pytest

from portalpilot.agent.conversation import (
    Conversation,
    ConversationClosedError,
)
from portalpilot.core.schema import (
    AssistantTurn,
    ConversationTurn,
    ToolResult,
    ToolStatus,
    ToolTurn,
    UserTurn,
)


def test_append_returns_index_and_keeps_order() -> None:
    conversation = Conversation()

    assert conversation.append(UserTurn(text="Hi")) == 0
    assert conversation.append(AssistantTurn(text="Hello")) == 1
    assert [t.kind for t in conversation] == ["user", "assistant"]
    assert conversation.since(1) == (AssistantTurn(text="Hello"),)
    assert conversation.since(5) == ()


def test_subscribers_see_each_append_until_unsubscribed() -> None:
    conversation = Conversation()
    seen: List[Tuple[int, ConversationTurn]] = []
    unsubscribe = conversation.subscribe(lambda index, turn: seen.append((index, turn)))

    conversation.append(UserTurn(text="one"))
    unsubscribe()
    conversation.append(UserTurn(text="two"))

    assert seen == [(0, UserTurn(text="one"))]


def test_broken_listener_does_not_block_append() -> None:
    conversation = Conversation()

    def broken(_index: int, _turn: ConversationTurn) -> None:
        raise RuntimeError("render failed")

    conversation.subscribe(broken)

    assert conversation.append(UserTurn(text="still here")) == 0
    assert len(conversation) == 1


def test_closed_conversation_rejects_appends() -> None:
    conversation = Conversation()
    conversation.append(UserTurn(text="Hi"))
    conversation.close()

    with pytest.raises(ConversationClosedError):
        conversation.append(AssistantTurn(text="late"))

    assert conversation.closed
    assert conversation.turns == (UserTurn(text="Hi"),)


def test_render_history_covers_all_turn_kinds() -> None:
    conversation = Conversation()
    conversation.append(UserTurn(text="Audit my workflows"))
    conversation.append(AssistantTurn(text="Checking"))
    result = ToolResult(
        tool_name="list_workflows", status=ToolStatus.SUCCESS, summary="5 items", payload={}
    )
    conversation.append(ToolTurn(result=result))

    assert conversation.render_history() == (
        "User: Audit my workflows\n"
        "Assistant: Checking\n"
        "Tool [list_workflows] success: 5 items"
    )
    assert conversation.render_history(limit=1) == "Tool [list_workflows] success: 5 items"
    assert conversation.render_history(limit=0) == ""
