"""Contabilidade por conversa usada na avaliação das regras."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Engagement:
    """Período em que um agente responde a conversa.

    Trocar de agente abre um novo período com contadores zerados.
    """

    agent_id: str
    counted_messages: int = 0
    human_messages: int = 0
    inbound_messages: int = 0
    fired: dict[str, int] = field(default_factory=dict)
    fired_after_agent_message: dict[str, Optional[datetime]] = field(default_factory=dict)

    def message_count(self, include_human: bool = False) -> int:
        if include_human:
            return self.counted_messages + self.human_messages
        return self.counted_messages

    def has_fired(self, rule_id: str) -> bool:
        return rule_id in self.fired

    def mark_fired(self, rule_id: str, *, last_agent_message_at: Optional[datetime] = None) -> None:
        self.fired[rule_id] = self.counted_messages
        self.fired_after_agent_message[rule_id] = last_agent_message_at


@dataclass
class ConversationRuleState:
    contact_id: str
    agent_override: Optional[str] = None
    current_agent_id: Optional[str] = None
    silenced: bool = False
    last_agent_message_at: Optional[datetime] = None
    human_replied_since_agent: bool = False
    engagements: dict[str, Engagement] = field(default_factory=dict)
    seen_message_ids: set[str] = field(default_factory=set)

    def engagement(self, agent_id: str) -> Engagement:
        current = self.engagements.get(agent_id)
        if current is None:
            current = Engagement(agent_id=agent_id)
            self.engagements[agent_id] = current
        return current

    def switch_agent(self, agent_id: str) -> Engagement:
        self.agent_override = agent_id
        self.current_agent_id = agent_id
        fresh = Engagement(agent_id=agent_id)
        self.engagements[agent_id] = fresh
        return fresh

    def remember(self, message_id: str) -> bool:
        """Retorna False se a mensagem já foi contabilizada."""
        if message_id in self.seen_message_ids:
            return False
        self.seen_message_ids.add(message_id)
        return True
