"""Modelos do motor de sincronização do inbox.

Este módulo re-exporta todos os modelos para facilitar importações.
"""
from .messages import (
    MediaDescriptor,
    Message,
    MessageDirection,
    MessagePage,
    MessageStatus,
    OutboundDraft,
    WireMessage,
)
from .conversations import (
    ContactSnapshot,
    ConversationPatch,
    ConversationStatus,
)
from .events import (
    ConversationUpdatedEvent,
    DomainEvent,
    NewMessageEvent,
    PresenceLeftEvent,
    PresenceTypingEvent,
    PresenceViewingEvent,
)
from .rules import (
    AddTagAction,
    AlwaysCondition,
    AssignAgentAction,
    AutomationRule,
    HoursOutsideCondition,
    KeywordMatchCondition,
    MessageCountCondition,
    NoAiResponseCondition,
    RuleRecord,
    SendMessageAction,
    StopRespondingAction,
    TransferHumanAction,
    compile_rule,
    order_rules,
)
from .presence import PresenceRecord, PresenceState

__all__ = [
    # Messages
    "MediaDescriptor",
    "Message",
    "MessageDirection",
    "MessagePage",
    "MessageStatus",
    "OutboundDraft",
    "WireMessage",
    # Conversations
    "ContactSnapshot",
    "ConversationPatch",
    "ConversationStatus",
    # Events
    "ConversationUpdatedEvent",
    "DomainEvent",
    "NewMessageEvent",
    "PresenceLeftEvent",
    "PresenceTypingEvent",
    "PresenceViewingEvent",
    # Rules
    "AddTagAction",
    "AlwaysCondition",
    "AssignAgentAction",
    "AutomationRule",
    "HoursOutsideCondition",
    "KeywordMatchCondition",
    "MessageCountCondition",
    "NoAiResponseCondition",
    "RuleRecord",
    "SendMessageAction",
    "StopRespondingAction",
    "TransferHumanAction",
    "compile_rule",
    "order_rules",
    # Presence
    "PresenceRecord",
    "PresenceState",
]
