"""Tests for the session layer: routing, busy rejection and closing mid-turn."""

import asyncio
from typing import Any

import pytest

from conftest import ScriptedBackend
from portalpilot.agent.agent_loop import TurnStatus
from portalpilot.agent.generation_client import GenerationClient
from portalpilot.agent.session import (
    SessionBusyError,
    SessionManager,
    SessionNotFoundError,
    build_tool_registry,
)
from portalpilot.config import Settings
from portalpilot.core.schema import AssistantTurn
from portalpilot.tools import ToolRegistry

REPLY = {"text": "Hello there", "suggestions": ["Audit my workflows"]}


class GatedBackend(ScriptedBackend):
    """Blocks every generation until the gate opens."""

    def __init__(self, script: Any) -> None:
        super().__init__(script)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def generate(self, prompt: str, **kwargs: Any) -> str:
        self.entered.set()
        await self.gate.wait()
        return await super().generate(prompt, **kwargs)


def _manager(backend: ScriptedBackend) -> SessionManager:
    return SessionManager(GenerationClient(backend), ToolRegistry())


async def test_submit_runs_turn() -> None:
    manager = _manager(ScriptedBackend([REPLY]))
    session_id = manager.create_session()

    result = await manager.submit_user_message(session_id, "Hi")

    assert result.ok
    conversation = manager.get(session_id).conversation
    assert [t.kind for t in conversation] == ["user", "assistant"]
    assert isinstance(conversation[1], AssistantTurn)
    assert manager.get(session_id).last_result is result
    assert manager.list_sessions() == [session_id]


async def test_sessions_are_isolated() -> None:
    manager = _manager(ScriptedBackend([REPLY]))
    first, second = manager.create_session(), manager.create_session()

    await manager.submit_user_message(first, "Hi")

    assert len(manager.get(first).conversation) == 2
    assert len(manager.get(second).conversation) == 0


async def test_unknown_session() -> None:
    manager = _manager(ScriptedBackend([REPLY]))

    with pytest.raises(SessionNotFoundError):
        await manager.submit_user_message("nope", "Hi")
    with pytest.raises(SessionNotFoundError):
        manager.close_session("nope")


async def test_busy_session_rejects_second_message() -> None:
    backend = GatedBackend([REPLY])
    manager = _manager(backend)
    session_id = manager.create_session()

    first = asyncio.create_task(manager.submit_user_message(session_id, "First"))
    await backend.entered.wait()

    with pytest.raises(SessionBusyError):
        await manager.submit_user_message(session_id, "Second")

    backend.gate.set()
    assert (await first).ok
    assert [t.kind for t in manager.get(session_id).conversation] == ["user", "assistant"]


async def test_close_during_generation_cancels_turn() -> None:
    backend = GatedBackend([REPLY])
    manager = _manager(backend)
    session_id = manager.create_session()
    conversation = manager.get(session_id).conversation

    pending = asyncio.create_task(manager.submit_user_message(session_id, "Hi"))
    await backend.entered.wait()
    manager.close_session(session_id)
    backend.gate.set()

    result = await pending

    assert result.status is TurnStatus.CANCELLED
    assert conversation.closed
    assert [t.kind for t in conversation] == ["user"]
    assert session_id not in manager.list_sessions()


def test_tool_registry_without_token_is_empty() -> None:
    registry, hubspot = build_tool_registry(Settings(HUBSPOT_ACCESS_TOKEN=None))

    assert len(registry) == 0
    assert hubspot is None


async def test_tool_registry_with_token_has_crm_tools() -> None:
    registry, hubspot = build_tool_registry(Settings(HUBSPOT_ACCESS_TOKEN="pat-test"))

    assert hubspot is not None
    assert "list_workflows" in registry
    assert "portal_health_audit" in registry
    await hubspot.aclose()
