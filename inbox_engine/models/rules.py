"""Regras de automação dos agentes (condição → ação).

O payload de cada regra chega da API como JSON livre. Aqui ele vira uma união
discriminada por ``type``; payloads ausentes ou malformados resultam em
``condition``/``action`` = ``None`` e a regra nunca dispara.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

ConditionType = Literal["keyword_match", "message_count", "no_ai_response", "hours_outside", "always"]
ActionType = Literal["transfer_human", "assign_agent", "stop_responding", "send_message", "add_tag"]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True, extra="ignore")


# ==================== CONDITIONS ====================

class KeywordMatchCondition(_Payload):
    type: Literal["keyword_match"] = "keyword_match"
    keywords: List[str] = Field(min_length=1)

    @field_validator("keywords")
    @classmethod
    def _clean(cls, v: List[str]) -> List[str]:
        cleaned = [k.strip().lower() for k in v if isinstance(k, str) and k.strip()]
        if not cleaned:
            raise ValueError("keywords vazio")
        return cleaned


class MessageCountCondition(_Payload):
    type: Literal["message_count"] = "message_count"
    count: int = Field(gt=0)
    include_human_messages: bool = False


class NoAiResponseCondition(_Payload):
    type: Literal["no_ai_response"] = "no_ai_response"
    minutes: float = Field(gt=0)


class HoursOutsideCondition(_Payload):
    type: Literal["hours_outside"] = "hours_outside"
    start: time
    end: time

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_hhmm(cls, v: Any) -> Any:
        if isinstance(v, str):
            hours, sep, minutes = v.strip().partition(":")
            if not sep or not hours.isdigit() or not minutes.isdigit():
                raise ValueError("horário deve estar no formato HH:MM")
            return time(int(hours), int(minutes))
        return v

    @model_validator(mode="after")
    def _window(self) -> "HoursOutsideCondition":
        if not self.start < self.end:
            raise ValueError("start deve ser menor que end")
        return self


class AlwaysCondition(_Payload):
    type: Literal["always"] = "always"


Condition = Annotated[
    Union[KeywordMatchCondition, MessageCountCondition, NoAiResponseCondition, HoursOutsideCondition, AlwaysCondition],
    Field(discriminator="type"),
]


# ==================== ACTIONS ====================

class TransferHumanAction(_Payload):
    type: Literal["transfer_human"] = "transfer_human"
    member_id: Optional[str] = None


class AssignAgentAction(_Payload):
    type: Literal["assign_agent"] = "assign_agent"
    agent_id: str = Field(min_length=1)


class StopRespondingAction(_Payload):
    type: Literal["stop_responding"] = "stop_responding"


class SendMessageAction(_Payload):
    type: Literal["send_message"] = "send_message"
    message: str = Field(min_length=1)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("mensagem vazia")
        return v


class AddTagAction(_Payload):
    type: Literal["add_tag"] = "add_tag"
    tag_id: str = Field(min_length=1)


Action = Annotated[
    Union[TransferHumanAction, AssignAgentAction, StopRespondingAction, SendMessageAction, AddTagAction],
    Field(discriminator="type"),
]

CONDITION_ADAPTER: TypeAdapter = TypeAdapter(Condition)
ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


# ==================== RULES ====================

class RuleRecord(BaseModel):
    """Formato da regra retornado pela API de gestão."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    agent_id: str
    name: str = ""
    active: bool = True
    priority: int = 0
    condition_type: str
    condition_value: Optional[Any] = None
    action_type: str
    action_value: Optional[Any] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AutomationRule:
    id: str
    agent_id: str
    name: str
    active: bool
    priority: int
    condition_type: str
    action_type: str
    condition: Optional[Any]
    action: Optional[Any]
    created_at: Optional[datetime] = None
    order: int = 0
    errors: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return self.condition is not None and self.action is not None


def compile_rule(record: RuleRecord, *, order: int = 0) -> AutomationRule:
    condition, condition_error = _validate_payload(CONDITION_ADAPTER, record.condition_type, record.condition_value)
    action, action_error = _validate_payload(ACTION_ADAPTER, record.action_type, record.action_value)
    errors = tuple(e for e in (condition_error, action_error) if e)
    return AutomationRule(
        id=record.id,
        agent_id=record.agent_id,
        name=record.name,
        active=record.active,
        priority=record.priority,
        condition_type=record.condition_type,
        action_type=record.action_type,
        condition=condition,
        action=action,
        created_at=record.created_at,
        order=order,
        errors=errors,
    )


def order_rules(rules: List[AutomationRule]) -> List[AutomationRule]:
    """Prioridade decrescente; empate resolvido pela ordem de criação."""
    indexed = list(enumerate(rules))
    indexed.sort(key=lambda item: (-item[1].priority, _created_key(item[1]), item[1].order, item[0]))
    return [rule for _, rule in indexed]


def _created_key(rule: AutomationRule) -> float:
    if rule.created_at is None:
        return float("inf")
    return rule.created_at.timestamp()


def _validate_payload(adapter: TypeAdapter, kind: str, value: Any) -> tuple[Optional[Any], Optional[str]]:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        return None, f"{kind}: payload deve ser objeto"
    try:
        return adapter.validate_python({**value, "type": kind}), None
    except ValidationError as e:
        return None, f"{kind}: {e.error_count()} erro(s) de validação"
