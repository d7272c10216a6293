"""Tests for the HubSpot CRM tools, served by an in-process ``httpx.MockTransport``."""

import json
from typing import (
    Any,
    Dict,
    List,
)

import httpx
import pytest

from portalpilot.agent.tool_executor import execute_tool
from portalpilot.core.schema import (
    ToolCall,
    ToolStatus,
)
from portalpilot.tools import ToolRegistry
from portalpilot.tools.hubspot import (
    HubSpotClient,
    register_hubspot_tools,
)

WORKFLOWS = [
    {"id": i, "name": f"Workflow {i}", "type": "DRIP_DELAY", "enabled": i % 2 == 0}
    for i in range(25)
]
CONTACTS = [
    {
        "id": str(i),
        "createdAt": f"2026-10-0{i + 1}T00:00:00Z",
        "properties": {"email": f"c{i}@example.com", "firstname": "Ada", "lastname": None},
    }
    for i in range(5)
]


class FakeHubSpot:
    """Routes requests to canned responses and records them."""

    def __init__(self, fail_path: str | None = None) -> None:
        self.requests: List[httpx.Request] = []
        self.fail_path = fail_path

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == self.fail_path:
            return httpx.Response(401, json={"message": "expired token"})
        if path == "/automation/v3/workflows":
            return httpx.Response(200, json={"workflows": WORKFLOWS})
        if path == "/automation/v2/sequences":
            return httpx.Response(200, json=[{"id": 1, "name": "Cold", "stepsCount": 4}])
        if path == "/crm/v3/objects/contacts":
            return httpx.Response(200, json={"results": CONTACTS})
        if path == "/crm/v3/objects/contacts/search":
            body: Dict[str, Any] = json.loads(request.content)
            return httpx.Response(200, json={"results": CONTACTS[:1], "echo": body})
        if path.startswith("/crm/v3/objects/contacts/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "properties": {}})
        return httpx.Response(404)


def _registry(fake: FakeHubSpot) -> ToolRegistry:
    client = HubSpotClient(
        "pat-test",
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(fake), base_url="https://api.hubapi.com"
        ),
    )
    return register_hubspot_tools(ToolRegistry(), client)


async def _run(registry: ToolRegistry, name: str, **arguments: Any):
    return await execute_tool(
        ToolCall(name=name, arguments=arguments), registry.declarations(), registry
    )


def test_all_tools_are_declared() -> None:
    registry = _registry(FakeHubSpot())
    assert [d.name for d in registry.declarations()] == [
        "list_newest_contacts",
        "list_workflows",
        "list_sequences",
        "get_contact",
        "search_contacts",
        "portal_health_audit",
    ]
    get_contact = registry.get("get_contact").declaration
    assert [(p.name, p.required) for p in get_contact.parameters] == [("id", True)]


async def test_list_workflows_is_capped_and_simplified() -> None:
    fake = FakeHubSpot()
    result = await _run(_registry(fake), "list_workflows")

    assert result.status is ToolStatus.SUCCESS
    assert result.payload["count"] == 20
    assert result.payload["total"] == 25
    assert result.payload["items"][0] == {
        "id": 0,
        "name": "Workflow 0",
        "type": "DRIP_DELAY",
        "active": True,
    }
    assert result.summary == "20 items"
    assert fake.requests[0].headers["Authorization"] == "Bearer pat-test"


async def test_list_newest_contacts_sorts_by_create_date() -> None:
    fake = FakeHubSpot()
    result = await _run(_registry(fake), "list_newest_contacts")

    assert result.payload["count"] == 5
    assert result.payload["items"][0]["email"] == "c0@example.com"
    assert result.payload["items"][0]["name"] == "Ada"
    assert fake.requests[0].url.params["sort"] == "-createdate"
    assert fake.requests[0].url.params["limit"] == "5"


async def test_get_contact_and_search_pass_arguments() -> None:
    fake = FakeHubSpot()
    registry = _registry(fake)

    contact = await _run(registry, "get_contact", id="42")
    found = await _run(registry, "search_contacts", query="acme")

    assert contact.payload["id"] == "42"
    assert found.payload["count"] == 1
    assert json.loads(fake.requests[1].content)["query"] == "acme"


async def test_http_error_becomes_failed_result() -> None:
    fake = FakeHubSpot(fail_path="/automation/v2/sequences")
    result = await _run(_registry(fake), "list_sequences")

    assert result.status is ToolStatus.ERROR
    assert "401" in result.summary


async def test_portal_health_audit_calls_listings_one_after_another() -> None:
    fake = FakeHubSpot()
    result = await _run(_registry(fake), "portal_health_audit")

    assert result.status is ToolStatus.SUCCESS
    assert [r.url.path for r in fake.requests] == [
        "/automation/v3/workflows",
        "/automation/v2/sequences",
        "/crm/v3/objects/contacts",
    ]
    summary = result.payload["workflows_summary"]
    assert summary == "Found 25 workflows (10 inactive among the first 20)."
    assert result.payload["contact_status"].endswith("2026-10-01T00:00:00Z")


@pytest.mark.parametrize("tool", ["list_workflows", "portal_health_audit"])
async def test_tools_reject_unexpected_arguments(tool: str) -> None:
    result = await _run(_registry(FakeHubSpot()), tool, limit=3)
    assert result.status is ToolStatus.ERROR
    assert "Invalid arguments" in result.summary
