"""Execução das ações das regras pelos serviços externos."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..models.conversations import ConversationPatch
from ..models.rules import (
    AddTagAction,
    AssignAgentAction,
    SendMessageAction,
    StopRespondingAction,
    TransferHumanAction,
)
from ..observability import LogContext, Observability
from ..store.conversation_store import ConversationStore


class AssignmentService(Protocol):
    async def assign(self, contact_id: str, member_id: Optional[str]) -> Any: ...


class TaggingService(Protocol):
    async def attach_tag(self, contact_id: str, tag_id: str) -> Any: ...


class MessagingService(Protocol):
    async def send_automated(self, contact_id: str, *, channel_id: str, number: str, text: str) -> Optional[str]: ...


class AgentHandoffService(Protocol):
    async def switch_agent(self, contact_id: str, agent_id: str) -> Any: ...

    async def silence(self, contact_id: str) -> Any: ...


class ActionSkipped(Exception):
    """Ação sem efeito possível (ex.: conversa sem canal para enviar)."""


@dataclass(frozen=True)
class ActionResult:
    action_type: str
    detail: Optional[str] = None


class ActionExecutor:
    """Chama os colaboradores; mudanças locais passam sempre pelo ConversationStore."""

    def __init__(
        self,
        *,
        store: ConversationStore,
        assignment: AssignmentService,
        tagging: TaggingService,
        messaging: MessagingService,
        handoff: AgentHandoffService,
        obs: Observability,
    ):
        self._store = store
        self._assignment = assignment
        self._tagging = tagging
        self._messaging = messaging
        self._handoff = handoff
        self._obs = obs

    async def execute(self, contact_id: str, action: Any) -> ActionResult:
        if isinstance(action, TransferHumanAction):
            return await self._transfer_human(contact_id, action)
        if isinstance(action, AssignAgentAction):
            await self._handoff.switch_agent(contact_id, action.agent_id)
            return ActionResult("assign_agent", detail=action.agent_id)
        if isinstance(action, StopRespondingAction):
            await self._handoff.silence(contact_id)
            return ActionResult("stop_responding")
        if isinstance(action, SendMessageAction):
            return await self._send_message(contact_id, action)
        if isinstance(action, AddTagAction):
            return await self._add_tag(contact_id, action)
        raise ValueError(f"ação desconhecida: {type(action).__name__}")

    async def _transfer_human(self, contact_id: str, action: TransferHumanAction) -> ActionResult:
        await self._assignment.assign(contact_id, action.member_id)
        # Sem atendente específico a conversa volta para a fila geral
        status = "open" if action.member_id else "pending"
        self._store.apply_conversation_update(
            contact_id,
            ConversationPatch(status=status, assignee_id=action.member_id, bot_active=False),
        )
        return ActionResult("transfer_human", detail=action.member_id)

    async def _send_message(self, contact_id: str, action: SendMessageAction) -> ActionResult:
        view = self._store.get(contact_id)
        channel_id = view.channel_ref if view else None
        number = view.number if view else None
        if not channel_id or not number:
            raise ActionSkipped("conversa sem canal ou número para envio")
        external_id = await self._messaging.send_automated(
            contact_id, channel_id=channel_id, number=number, text=action.message
        )
        return ActionResult("send_message", detail=external_id)

    async def _add_tag(self, contact_id: str, action: AddTagAction) -> ActionResult:
        if self._store.has_tag(contact_id, action.tag_id):
            self._obs.debug("rules.action.tag_present", ctx=LogContext(contact_id=contact_id), tag=action.tag_id)
            return ActionResult("add_tag", detail=action.tag_id)
        await self._tagging.attach_tag(contact_id, action.tag_id)
        if contact_id in self._store:
            self._store.add_tag(contact_id, action.tag_id)
        return ActionResult("add_tag", detail=action.tag_id)
