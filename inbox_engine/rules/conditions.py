from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Callable, Optional

from ..models.messages import Message
from ..models.rules import (
    AlwaysCondition,
    HoursOutsideCondition,
    KeywordMatchCondition,
    MessageCountCondition,
    NoAiResponseCondition,
)
from .state import Engagement


@dataclass(frozen=True)
class ConditionContext:
    """Tudo que uma condição pode consultar para uma mensagem recebida."""

    rule_id: str
    message: Message
    engagement: Engagement
    now: datetime
    local_time: time
    last_agent_message_at: Optional[datetime]
    human_replied_since_agent: bool

    @property
    def text(self) -> str:
        return (self.message.text or "").lower()

    @property
    def already_fired(self) -> bool:
        return self.engagement.has_fired(self.rule_id)


def keyword_match(condition: KeywordMatchCondition, ctx: ConditionContext) -> bool:
    text = ctx.text
    if not text:
        return False
    return any(keyword in text for keyword in condition.keywords)


def message_count(condition: MessageCountCondition, ctx: ConditionContext) -> bool:
    if ctx.already_fired:
        return False
    total = ctx.engagement.message_count(include_human=condition.include_human_messages)
    return total >= condition.count


def no_ai_response(condition: NoAiResponseCondition, ctx: ConditionContext) -> bool:
    last = ctx.last_agent_message_at
    if last is None or ctx.human_replied_since_agent:
        return False
    # Um disparo por resposta do agente
    if ctx.already_fired and ctx.engagement.fired_after_agent_message.get(ctx.rule_id) == last:
        return False
    return ctx.now - last > timedelta(minutes=condition.minutes)


def hours_outside(condition: HoursOutsideCondition, ctx: ConditionContext) -> bool:
    return not (condition.start <= ctx.local_time < condition.end)


def always(condition: AlwaysCondition, ctx: ConditionContext) -> bool:
    return ctx.engagement.inbound_messages == 1 and not ctx.already_fired


EVALUATORS: dict[str, Callable[[Any, ConditionContext], bool]] = {
    "keyword_match": keyword_match,
    "message_count": message_count,
    "no_ai_response": no_ai_response,
    "hours_outside": hours_outside,
    "always": always,
}


def evaluate_condition(condition: Any, ctx: ConditionContext) -> bool:
    if condition is None:
        return False
    evaluator = EVALUATORS.get(getattr(condition, "type", ""))
    if evaluator is None:
        return False
    return bool(evaluator(condition, ctx))
