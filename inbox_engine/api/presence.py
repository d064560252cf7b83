"""Saída de eventos de presença do operador local."""
from __future__ import annotations

from typing import Any

from ..http import HttpClient


class PresenceApi:
    def __init__(self, client: HttpClient, *, org_id: str, operator_id: str):
        self._client = client
        self._org_id = org_id
        self._operator_id = operator_id

    async def viewing(self, contact_id: str) -> dict[str, Any]:
        return await self._client.request("POST", "/presence/viewing", json=self._body(contact_id))

    async def left(self, contact_id: str) -> dict[str, Any]:
        return await self._client.request("POST", "/presence/left", json=self._body(contact_id))

    async def typing(self, contact_id: str, is_typing: bool) -> dict[str, Any]:
        return await self._client.request(
            "POST", "/presence/typing", json={**self._body(contact_id), "isTyping": is_typing}
        )

    def _body(self, contact_id: str) -> dict[str, Any]:
        return {"orgId": self._org_id, "operatorId": self._operator_id, "contactId": contact_id}
