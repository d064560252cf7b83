"""Avaliação das regras de automação a cada mensagem recebida.

Para cada mensagem de entrada o motor escolhe no máximo uma regra: as regras
ativas do agente vinculado ao canal são ordenadas por prioridade (decrescente,
empate pela ordem de criação) e a primeira cuja condição casa é executada.

A marcação de "disparada" acontece antes da execução da ação e não é desfeita
se a ação falhar.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from ..errors import ConfigError, InboxError
from ..models.messages import Message, utcnow
from ..models.rules import (
    AssignAgentAction,
    AutomationRule,
    RuleRecord,
    StopRespondingAction,
    compile_rule,
    order_rules,
)
from ..notifications import Notifier
from ..observability import LogContext, Observability
from .actions import ActionExecutor, ActionSkipped
from .conditions import ConditionContext, evaluate_condition
from .state import ConversationRuleState


@dataclass(frozen=True)
class RuleOutcome:
    contact_id: str
    rule_id: str
    action_type: str
    succeeded: bool
    error: Optional[str] = None


class RuleEngine:
    def __init__(
        self,
        *,
        executor: ActionExecutor,
        obs: Observability,
        rules_api: Any = None,
        notifier: Optional[Notifier] = None,
        timezone: str = "America/Sao_Paulo",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._executor = executor
        self._obs = obs
        self._rules_api = rules_api
        self._notifier = notifier
        try:
            self._tz = ZoneInfo(timezone)
        except (KeyError, ValueError) as e:
            raise ConfigError("Timezone inválida.", details={"timezone": timezone, "error": str(e)})
        self._clock = clock
        self._rules: dict[str, list[AutomationRule]] = {}
        self._channel_agents: dict[str, Optional[str]] = {}
        self._states: dict[str, ConversationRuleState] = {}

    # ==================== RULE SETS ====================

    def load_rules(self, agent_id: str, records: Iterable[RuleRecord]) -> list[AutomationRule]:
        compiled = [compile_rule(r, order=i) for i, r in enumerate(records)]
        for rule in compiled:
            if not rule.valid:
                self._obs.warning(
                    "rules.payload.invalid",
                    ctx=LogContext(agent_id=agent_id),
                    rule_id=rule.id,
                    errors="; ".join(rule.errors),
                )
        ordered = order_rules(compiled)
        self._rules[agent_id] = ordered
        return ordered

    async def rules_for(self, agent_id: str) -> list[AutomationRule]:
        cached = self._rules.get(agent_id)
        if cached is not None:
            return cached
        if self._rules_api is None:
            return []
        records = await self._rules_api.list_rules(agent_id)
        return self.load_rules(agent_id, records)

    def invalidate(self, agent_id: Optional[str] = None) -> None:
        if agent_id is None:
            self._rules.clear()
        else:
            self._rules.pop(agent_id, None)

    def bind_channel(self, channel_id: str, agent_id: Optional[str]) -> None:
        self._channel_agents[channel_id] = agent_id

    async def agent_for(self, contact_id: str, channel_id: Optional[str]) -> Optional[str]:
        state = self.state(contact_id)
        if state.agent_override:
            return state.agent_override
        if not channel_id:
            return state.current_agent_id
        if channel_id not in self._channel_agents:
            if self._rules_api is None:
                return None
            self._channel_agents[channel_id] = await self._rules_api.agent_for_channel(channel_id)
        return self._channel_agents[channel_id]

    # ==================== CONVERSATION STATE ====================

    def state(self, contact_id: str) -> ConversationRuleState:
        current = self._states.get(contact_id)
        if current is None:
            current = ConversationRuleState(contact_id=contact_id)
            self._states[contact_id] = current
        return current

    def is_silenced(self, contact_id: str) -> bool:
        current = self._states.get(contact_id)
        return bool(current and current.silenced)

    def reset(self, contact_id: str) -> None:
        """Reativa a avaliação de uma conversa silenciada por ``stop_responding``."""
        current = self._states.get(contact_id)
        if current:
            current.silenced = False
            self._obs.info("rules.conversation.reset", ctx=LogContext(contact_id=contact_id))

    def observe(self, contact_id: str, message: Message) -> None:
        """Contabiliza mensagens de saída (agente ou operador) sem avaliar regras."""
        if message.inbound or message.note:
            return
        state = self.state(contact_id)
        if not state.remember(message.id):
            return
        if message.agent_authored:
            state.last_agent_message_at = message.created_at
            state.human_replied_since_agent = False
            if state.current_agent_id:
                state.engagement(state.current_agent_id).counted_messages += 1
        elif message.operator_authored:
            state.human_replied_since_agent = True
            if state.current_agent_id:
                state.engagement(state.current_agent_id).human_messages += 1

    def note_human_reply(self, contact_id: str) -> None:
        self.state(contact_id).human_replied_since_agent = True

    # ==================== EVALUATION ====================

    async def handle_message(
        self,
        contact_id: str,
        message: Message,
        *,
        channel_id: Optional[str] = None,
    ) -> Optional[RuleOutcome]:
        if not message.inbound:
            self.observe(contact_id, message)
            return None

        state = self.state(contact_id)
        log_ctx = LogContext(contact_id=contact_id)
        if state.silenced:
            self._obs.debug("rules.skip.silenced", ctx=log_ctx, message_id=message.id)
            return None
        if not state.remember(message.id):
            return None

        agent_id = await self.agent_for(contact_id, channel_id or message.channel_id)
        if not agent_id:
            self._obs.debug("rules.skip.no_agent", ctx=log_ctx, channel=channel_id or message.channel_id)
            return None
        state.current_agent_id = agent_id
        log_ctx = LogContext(contact_id=contact_id, agent_id=agent_id)

        engagement = state.engagement(agent_id)
        engagement.counted_messages += 1
        engagement.inbound_messages += 1

        winner = self._select(await self.rules_for(agent_id), state, message, log_ctx)
        if winner is None:
            return None

        engagement.mark_fired(winner.id, last_agent_message_at=state.last_agent_message_at)
        self._obs.info("rules.fired", ctx=log_ctx, rule_id=winner.id, action=winner.action_type)
        return await self._execute(contact_id, winner, state, log_ctx)

    def _select(
        self,
        rules: list[AutomationRule],
        state: ConversationRuleState,
        message: Message,
        log_ctx: LogContext,
    ) -> Optional[AutomationRule]:
        now = self._clock()
        local_time = now.astimezone(self._tz).time()
        engagement = state.engagement(state.current_agent_id or "")
        for rule in rules:
            if not rule.active or not rule.valid:
                continue
            ctx = ConditionContext(
                rule_id=rule.id,
                message=message,
                engagement=engagement,
                now=now,
                local_time=local_time,
                last_agent_message_at=state.last_agent_message_at,
                human_replied_since_agent=state.human_replied_since_agent,
            )
            try:
                matched = evaluate_condition(rule.condition, ctx)
            except Exception as e:
                self._obs.warning("rules.condition.failed", ctx=log_ctx, rule_id=rule.id, error=str(e))
                continue
            if matched:
                return rule
        return None

    async def _execute(
        self,
        contact_id: str,
        rule: AutomationRule,
        state: ConversationRuleState,
        log_ctx: LogContext,
    ) -> RuleOutcome:
        # Efeito local vale mesmo se a chamada remota falhar
        if isinstance(rule.action, StopRespondingAction):
            state.silenced = True
        elif isinstance(rule.action, AssignAgentAction):
            state.switch_agent(rule.action.agent_id)
            self._obs.info("rules.agent.switched", ctx=log_ctx, to=rule.action.agent_id)

        try:
            result = await self._executor.execute(contact_id, rule.action)
        except ActionSkipped as e:
            self._obs.warning("rules.action.skipped", ctx=log_ctx, rule_id=rule.id, reason=str(e))
            return RuleOutcome(contact_id, rule.id, rule.action_type, succeeded=False, error=str(e))
        except InboxError as e:
            return self._failed(contact_id, rule, log_ctx, e.message, code=e.code)
        except Exception as e:
            self._obs.exception("rules.action.unexpected", ctx=log_ctx, rule_id=rule.id)
            return self._failed(contact_id, rule, log_ctx, str(e), code=type(e).__name__)

        if result.action_type == "send_message":
            state.last_agent_message_at = self._clock()
            state.human_replied_since_agent = False
        return RuleOutcome(contact_id, rule.id, rule.action_type, succeeded=True)

    def _failed(
        self,
        contact_id: str,
        rule: AutomationRule,
        log_ctx: LogContext,
        error: str,
        *,
        code: str,
    ) -> RuleOutcome:
        self._obs.error("rules.action.failed", ctx=log_ctx, rule_id=rule.id, action=rule.action_type, code=code)
        if self._notifier:
            self._notifier.notify(
                "action_failed",
                f"Falha ao executar regra: {rule.name or rule.id}",
                error,
                contact_id=contact_id,
                level="error",
            )
        return RuleOutcome(contact_id, rule.id, rule.action_type, succeeded=False, error=error)
