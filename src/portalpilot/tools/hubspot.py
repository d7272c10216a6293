"""Read-only HubSpot CRM tools exposed to the Co-Pilot."""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

import httpx

from portalpilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

NEWEST_CONTACTS_LIMIT = 5
WORKFLOWS_LIMIT = 20  # keep payloads small enough to fold back into a prompt
SEQUENCES_LIMIT = 15
SEARCH_LIMIT = 10


class HubSpotClient:
    """
    Thin async wrapper around the HubSpot REST API.

    HTTP errors are raised as ``httpx.HTTPStatusError``; the dispatcher turns them into failed tool
    results.
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send one authenticated request and return the decoded JSON body."""
        logger.debug("HubSpot %s %s params=%s", method, path, params)
        resp = await self._get_client().request(
            method,
            path,
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {self._token}"},
        )
        resp.raise_for_status()
        return resp.json()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
        self._client = None


def _contact_summary(record: Mapping[str, Any]) -> Dict[str, Any]:
    props = record.get("properties") or {}
    return {
        "id": record.get("id"),
        "created": record.get("createdAt"),
        "email": props.get("email"),
        "name": " ".join(p for p in (props.get("firstname"), props.get("lastname")) if p) or None,
    }


def register_hubspot_tools(registry: ToolRegistry, client: HubSpotClient) -> ToolRegistry:
    """Register the CRM tools on *registry*, bound to *client*."""

    @registry.tool(
        "list_newest_contacts",
        f"Fetch the {NEWEST_CONTACTS_LIMIT} most recently created contacts from HubSpot.",
    )
    async def list_newest_contacts() -> Dict[str, Any]:
        data = await client.request(
            "GET",
            "/crm/v3/objects/contacts",
            params={
                "sort": "-createdate",
                "limit": NEWEST_CONTACTS_LIMIT,
                "properties": "email,firstname,lastname",
            },
        )
        items = [_contact_summary(r) for r in data.get("results", [])]
        return {"count": len(items), "items": items}

    @registry.tool("list_workflows", "Retrieve all automation workflows in the portal.")
    async def list_workflows() -> Dict[str, Any]:
        data = await client.request(
            "GET", "/automation/v3/workflows", params={"properties": "name,type,enabled"}
        )
        workflows = data.get("workflows") or []
        items = [
            {
                "id": w.get("id"),
                "name": w.get("name"),
                "type": w.get("type"),
                "active": w.get("enabled"),
            }
            for w in workflows[:WORKFLOWS_LIMIT]
        ]
        return {"count": len(items), "total": len(workflows), "items": items}

    @registry.tool("list_sequences", "Retrieve sales email sequences.")
    async def list_sequences() -> Dict[str, Any]:
        data = await client.request("GET", "/automation/v2/sequences")
        sequences: List[Mapping[str, Any]] = (
            data if isinstance(data, list) else data.get("results", [])
        )
        items = [
            {"id": s.get("id"), "name": s.get("name"), "steps": s.get("stepsCount")}
            for s in sequences[:SEQUENCES_LIMIT]
        ]
        return {"count": len(items), "items": items}

    @registry.tool("get_contact", "Retrieve details for a specific contact by ID.")
    async def get_contact(id: str) -> Dict[str, Any]:  # pylint: disable=redefined-builtin
        return await client.request(
            "GET",
            f"/crm/v3/objects/contacts/{id}",
            params={"properties": "email,firstname,lastname,jobtitle"},
        )

    @registry.tool("search_contacts", "Search contacts by name, email or company.")
    async def search_contacts(query: str) -> Dict[str, Any]:
        data = await client.request(
            "POST",
            "/crm/v3/objects/contacts/search",
            json={
                "query": query,
                "limit": SEARCH_LIMIT,
                "properties": ["email", "firstname", "lastname"],
            },
        )
        items = [_contact_summary(r) for r in data.get("results", [])]
        return {"count": len(items), "items": items}

    @registry.tool(
        "portal_health_audit",
        "Perform a strategic audit of the whole portal, including workflows and sequences.",
    )
    async def portal_health_audit() -> Dict[str, Any]:
        # One listing at a time; these share the CRM rate limit with everything else.
        workflows = await list_workflows()
        sequences = await list_sequences()
        contacts = await list_newest_contacts()
        latest = contacts["items"][0]["created"] if contacts["items"] else None
        inactive = sum(1 for w in workflows["items"] if not w["active"])
        return {
            "workflows_summary": (
                f"Found {workflows['total']} workflows ({inactive} inactive among the first "
                f"{workflows['count']})."
            ),
            "sequences_summary": f"Found {sequences['count']} sequences.",
            "contact_status": f"Latest contact created at: {latest or 'N/A'}",
        }

    return registry
