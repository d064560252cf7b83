"""Cliente da API de persistência de mensagens."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from ..http import HttpClient
from ..models.messages import MessagePage, WireMessage
from ..observability import LogContext, Observability


class MessagesApi:
    def __init__(self, client: HttpClient, *, org_id: str, obs: Observability):
        self._client = client
        self._org_id = org_id
        self._obs = obs

    async def list_messages(self, contact_id: str, *, limit: int, before: Optional[datetime] = None) -> MessagePage:
        params: dict[str, Any] = {"contactId": contact_id, "orgId": self._org_id, "limit": limit}
        if before is not None:
            params["before"] = before.isoformat()
        data = await self._client.request("GET", "/messages", params=params)
        raw_items = data.get("messages")
        if raw_items is None:
            raw_items = data.get("items") or []

        messages = []
        for item in raw_items:
            try:
                messages.append(WireMessage.model_validate(item).to_message())
            except ValidationError as e:
                self._obs.warning(
                    "api.messages.malformed",
                    ctx=LogContext(org_id=self._org_id, contact_id=contact_id),
                    errors=e.error_count(),
                )
        messages.sort(key=lambda m: m.created_at)
        has_more = data.get("hasMore")
        if has_more is None:
            # Sem o campo, página cheia indica que há mais
            has_more = len(raw_items) >= limit
        return MessagePage(messages=messages, has_more=bool(has_more))

    async def create_message(
        self,
        contact_id: str,
        *,
        content: str,
        type: str = "text",
        direction: str = "outbound",
        channel_id: Optional[str] = None,
        status: str = "sent",
    ) -> dict[str, Any]:
        body = {
            "orgId": self._org_id,
            "contactId": contact_id,
            "channelId": channel_id,
            "direction": direction,
            "type": type,
            "content": content,
            "status": status,
        }
        return await self._client.request("POST", "/messages", json=body)
