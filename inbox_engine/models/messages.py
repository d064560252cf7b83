"""Modelos de mensagens da conversa (estado local e formato da API)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MessageDirection = Literal["inbound", "outbound-reply", "outbound-note"]
MessageStatus = Literal["sending", "sent", "error"]

MEDIA_TYPES = frozenset({"image", "video", "audio", "ptt", "document", "sticker"})
_ERROR_STATUSES = frozenset({"error", "failed"})
_SENDING_STATUSES = frozenset({"sending", "queued"})


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== LOCAL STATE ====================

class MediaDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    url: Optional[str] = None
    caption: Optional[str] = None

    @property
    def pending(self) -> bool:
        return not self.url


class Message(BaseModel):
    """Mensagem imutável; transições de status geram uma nova instância."""

    model_config = ConfigDict(frozen=True)

    id: str
    direction: MessageDirection
    text: str = ""
    media: Optional[MediaDescriptor] = None
    status: MessageStatus = "sent"
    created_at: datetime
    external_id: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    channel_id: Optional[str] = None
    local: bool = False

    @field_validator("created_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def inbound(self) -> bool:
        return self.direction == "inbound"

    @property
    def outbound(self) -> bool:
        return self.direction != "inbound"

    @property
    def note(self) -> bool:
        return self.direction == "outbound-note"

    @property
    def agent_authored(self) -> bool:
        # Respostas sem usuário do painel vêm do agente de IA/automação
        return self.direction == "outbound-reply" and not self.author_id and not self.local

    @property
    def operator_authored(self) -> bool:
        return self.direction == "outbound-reply" and bool(self.author_id)


class OutboundDraft(BaseModel):
    text: str = ""
    kind: Literal["reply", "note"] = "reply"
    media: Optional[MediaDescriptor] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    channel_id: Optional[str] = None


# ==================== API FORMAT ====================

class WireUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    name: Optional[str] = None
    image: Optional[str] = None


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    direction: str = "inbound"
    type: str = "text"
    content: Optional[str] = ""
    status: Optional[str] = "sent"
    channel_id: Optional[str] = None
    created_at: datetime
    external_id: Optional[str] = None
    media_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("mediaUrl", "media_url", "url"))
    caption: Optional[str] = None
    user: Optional[WireUser] = None

    def to_message(self) -> Message:
        direction: MessageDirection
        if (self.direction or "").lower() == "inbound":
            direction = "inbound"
        elif (self.type or "").lower() == "note":
            direction = "outbound-note"
        else:
            direction = "outbound-reply"

        media = None
        kind = (self.type or "").lower()
        if kind in MEDIA_TYPES:
            url = self.media_url
            if not url and (self.content or "").startswith(("http://", "https://")):
                url = self.content
            media = MediaDescriptor(type=kind, url=url, caption=self.caption)

        return Message(
            id=self.id,
            direction=direction,
            text=(self.caption if media and self.caption else self.content) or "",
            media=media,
            status=map_wire_status(self.status),
            created_at=self.created_at,
            external_id=self.external_id,
            author_id=self.user.id if self.user else None,
            author_name=self.user.name if self.user else None,
            channel_id=self.channel_id,
        )


class MessagePage(BaseModel):
    messages: list[Message]
    has_more: bool = False


def map_wire_status(status: Optional[str]) -> MessageStatus:
    s = (status or "").strip().lower()
    if s in _ERROR_STATUSES:
        return "error"
    if s in _SENDING_STATUSES:
        return "sending"
    return "sent"
