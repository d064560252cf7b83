"""Leitura das regras de automação e do vínculo canal → agente."""
from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from ..http import HttpClient
from ..models.rules import RuleRecord
from ..observability import LogContext, Observability


class RulesApi:
    def __init__(self, client: HttpClient, *, org_id: str, obs: Observability):
        self._client = client
        self._org_id = org_id
        self._obs = obs

    async def list_rules(self, agent_id: str) -> list[RuleRecord]:
        data = await self._client.request("GET", "/agent-rules", params={"agentId": agent_id, "orgId": self._org_id})
        raw_items = data.get("rules")
        if raw_items is None:
            raw_items = data.get("items") or []

        records: list[RuleRecord] = []
        for item in raw_items:
            try:
                records.append(RuleRecord.model_validate(item))
            except ValidationError as e:
                self._obs.warning(
                    "api.rules.malformed",
                    ctx=LogContext(org_id=self._org_id, agent_id=agent_id),
                    errors=e.error_count(),
                )
        return records

    async def agent_for_channel(self, channel_id: str) -> Optional[str]:
        data = await self._client.request("GET", f"/channels/{channel_id}", params={"orgId": self._org_id})
        agent_id = data.get("agentId") or (data.get("agent") or {}).get("id")
        return str(agent_id) if agent_id else None
