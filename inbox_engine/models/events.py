"""Eventos do stream de push da organização."""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .conversations import ContactSnapshot, ConversationPatch, ConversationStatus
from .messages import Message, WireMessage

NEW_MESSAGE = "new_message"
CONVERSATION_UPDATED = "conversation_updated"
PRESENCE_VIEWING = "presence_viewing"
PRESENCE_LEFT = "presence_left"
PRESENCE_TYPING = "presence_typing"

EVENT_TYPE_ALIASES = {
    "new_message": NEW_MESSAGE,
    "conversation_updated": CONVERSATION_UPDATED,
    "conv_updated": CONVERSATION_UPDATED,
    "presence_viewing": PRESENCE_VIEWING,
    "user_viewing": PRESENCE_VIEWING,
    "presence_left": PRESENCE_LEFT,
    "user_left": PRESENCE_LEFT,
    "presence_typing": PRESENCE_TYPING,
    "user_typing": PRESENCE_TYPING,
}


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class NewMessageEvent(_Event):
    contact_id: str
    wire_message: WireMessage = Field(validation_alias=AliasChoices("message", "wire_message"))
    contact: Optional[ContactSnapshot] = None
    contact_name: Optional[str] = None
    assigned_to_id: Optional[str] = None
    channel_id: Optional[str] = None

    @property
    def kind(self) -> str:
        return NEW_MESSAGE

    @property
    def message(self) -> Message:
        return self.wire_message.to_message()

    @property
    def display_name(self) -> str:
        if self.contact_name:
            return self.contact_name
        if self.contact and self.contact.name:
            return self.contact.name
        return "Novo contato"


class ConversationUpdatedEvent(_Event):
    contact_id: str
    status: Optional[ConversationStatus] = Field(
        default=None, validation_alias=AliasChoices("status", "convStatus")
    )
    assignee_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("assigneeId", "assignedToId"))
    assignee_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("assigneeName", "assignedToName")
    )

    @property
    def kind(self) -> str:
        return CONVERSATION_UPDATED

    def to_patch(self) -> ConversationPatch:
        fields: dict = {}
        if self.status is not None:
            fields["status"] = self.status
        if "assignee_id" in self.model_fields_set:
            fields["assignee_id"] = self.assignee_id
            fields["assignee_name"] = self.assignee_name
        return ConversationPatch(**fields)


class PresenceViewingEvent(_Event):
    contact_id: str
    operator_id: str = Field(validation_alias=AliasChoices("operatorId", "userId", "operator_id"))
    operator_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("operatorName", "userName"))
    timestamp: Optional[datetime] = None

    @property
    def kind(self) -> str:
        return PRESENCE_VIEWING


class PresenceLeftEvent(_Event):
    contact_id: str
    operator_id: str = Field(validation_alias=AliasChoices("operatorId", "userId", "operator_id"))

    @property
    def kind(self) -> str:
        return PRESENCE_LEFT


class PresenceTypingEvent(_Event):
    contact_id: str
    operator_id: str = Field(validation_alias=AliasChoices("operatorId", "userId", "operator_id"))
    operator_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("operatorName", "userName"))
    is_typing: bool = True
    text: Optional[str] = None

    @property
    def kind(self) -> str:
        return PRESENCE_TYPING


PresenceEvent = Union[PresenceViewingEvent, PresenceLeftEvent, PresenceTypingEvent]
DomainEvent = Union[NewMessageEvent, ConversationUpdatedEvent, PresenceViewingEvent, PresenceLeftEvent, PresenceTypingEvent]

EVENT_MODELS: dict[str, type[_Event]] = {
    NEW_MESSAGE: NewMessageEvent,
    CONVERSATION_UPDATED: ConversationUpdatedEvent,
    PRESENCE_VIEWING: PresenceViewingEvent,
    PRESENCE_LEFT: PresenceLeftEvent,
    PRESENCE_TYPING: PresenceTypingEvent,
}
