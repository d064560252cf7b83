"""Modelos relacionados a conversas e contatos."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ConversationStatus = Literal["pending", "open", "resolved"]

CONVERSATION_STATUSES = ("pending", "open", "resolved")


# ==================== CONTACTS ====================

class ContactSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    name: str = ""
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    external_id: Optional[str] = None
    channel_id: Optional[str] = None
    conv_status: ConversationStatus = "open"
    assigned_to_id: Optional[str] = None
    created_at: Optional[datetime] = None
    tags: List[str] = []

    @property
    def number(self) -> Optional[str]:
        if self.external_id:
            return self.external_id
        if self.phone:
            return self.phone.lstrip("+")
        return None


# ==================== CONVERSATIONS ====================

class ConversationPatch(BaseModel):
    """Merge raso: apenas os campos informados são aplicados."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: Optional[ConversationStatus] = Field(
        default=None, validation_alias=AliasChoices("status", "convStatus", "conv_status")
    )
    assignee_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("assigneeId", "assignedToId", "assignee_id")
    )
    assignee_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("assigneeName", "assignedToName", "assignee_name")
    )
    tags: Optional[List[str]] = None
    bot_active: Optional[bool] = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}
