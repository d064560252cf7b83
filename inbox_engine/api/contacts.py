"""Cliente da API de contatos: atribuição, status, tags e controle do agente."""
from __future__ import annotations

from typing import Any, Optional

from ..errors import CollaboratorError
from ..http import HttpClient


class ContactsApi:
    def __init__(self, client: HttpClient, *, org_id: str):
        self._client = client
        self._org_id = org_id

    async def patch(self, contact_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._client.request("PATCH", f"/contacts/{contact_id}", json={"orgId": self._org_id, **fields})

    async def assign(self, contact_id: str, member_id: Optional[str]) -> dict[str, Any]:
        return await self._client.request(
            "PATCH",
            f"/contacts/{contact_id}/assign",
            json={"orgId": self._org_id, "assignedToId": member_id},
        )

    async def resolve(self, contact_id: str) -> dict[str, Any]:
        return await self._client.request("PATCH", f"/contacts/{contact_id}/resolve", json={"orgId": self._org_id})

    async def open(self, contact_id: str) -> dict[str, Any]:
        return await self._client.request("PATCH", f"/contacts/{contact_id}/open", json={"orgId": self._org_id})

    async def attach_tag(self, contact_id: str, tag_id: str) -> None:
        try:
            await self._client.request("POST", f"/tags/{tag_id}/contacts", json={"contactId": contact_id})
        except CollaboratorError as e:
            # 409: tag já aplicada
            if e.status_code == 409:
                return
            raise

    async def switch_agent(self, contact_id: str, agent_id: str) -> None:
        await self.patch(contact_id, {"aiAgentId": agent_id})

    async def silence(self, contact_id: str) -> None:
        await self.patch(contact_id, {"aiSilenced": True})
