"""Estado local das conversas do operador.

Todas as mutações passam pelos métodos desta classe e são síncronas: sob o
event loop elas são atômicas em relação aos demais handlers. Apenas as
cargas de página (``load_initial``/``load_older``) suspendem, e o resultado
delas é descartado quando fica obsoleto.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..api.messages import MessagesApi
from ..errors import ConversationNotFoundError, MessageNotFoundError
from ..models.conversations import ContactSnapshot, ConversationPatch, ConversationStatus
from ..models.messages import Message, MessagePage, MessageStatus, OutboundDraft, utcnow
from ..observability import LogContext, Observability
from .recency import RecencyIndex


@dataclass
class Conversation:
    contact_id: str
    contact: Optional[ContactSnapshot] = None
    messages: list[Message] = field(default_factory=list)
    message_ids: set[str] = field(default_factory=set)
    status: ConversationStatus = "open"
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    tags: set[str] = field(default_factory=set)
    unread_count: int = 0
    channel_ref: Optional[str] = None
    oldest_loaded_at: Optional[datetime] = None
    has_more_before: bool = False
    bot_active: bool = True
    last_activity_at: Optional[datetime] = None
    reconciled: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_contact(cls, contact_id: str, contact: Optional[ContactSnapshot]) -> "Conversation":
        if contact is None:
            return cls(contact_id=contact_id)
        return cls(
            contact_id=contact_id,
            contact=contact,
            status=contact.conv_status,
            assignee_id=contact.assigned_to_id,
            tags=set(contact.tags),
            channel_ref=contact.channel_id,
        )


@dataclass(frozen=True)
class ConversationView:
    contact_id: str
    contact: Optional[ContactSnapshot]
    messages: tuple[Message, ...]
    status: ConversationStatus
    assignee_id: Optional[str]
    assignee_name: Optional[str]
    tags: frozenset[str]
    unread_count: int
    channel_ref: Optional[str]
    oldest_loaded_at: Optional[datetime]
    has_more_before: bool
    bot_active: bool

    @property
    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    @property
    def number(self) -> Optional[str]:
        return self.contact.number if self.contact else None

    def as_dict(self) -> dict:
        return {
            "contactId": self.contact_id,
            "name": self.contact.name if self.contact else None,
            "status": self.status,
            "assigneeId": self.assignee_id,
            "assigneeName": self.assignee_name,
            "tags": sorted(self.tags),
            "unreadCount": self.unread_count,
            "channelId": self.channel_ref,
            "hasMoreBefore": self.has_more_before,
            "oldestLoadedAt": self.oldest_loaded_at.isoformat() if self.oldest_loaded_at else None,
            "messages": [
                {
                    "id": m.id,
                    "direction": m.direction,
                    "text": m.text,
                    "status": m.status,
                    "createdAt": m.created_at.isoformat(),
                }
                for m in self.messages
            ],
        }


@dataclass(frozen=True)
class ApplyResult:
    contact_id: str
    applied: bool
    delivered_live: bool = False
    created: bool = False
    reconciled_temp_id: Optional[str] = None
    message: Optional[Message] = None


@dataclass(frozen=True)
class PageResult:
    contact_id: str
    applied: bool
    added: int = 0
    has_more_before: bool = False


def anchored_scroll_top(prev_scroll_top: float, prev_scroll_height: float, new_scroll_height: float) -> float:
    """Mantém a posição visual após prepend: desloca pelo conteúdo novo."""
    return prev_scroll_top + max(0.0, new_scroll_height - prev_scroll_height)


class ConversationStore:
    def __init__(self, *, obs: Observability, messages_api: Optional[MessagesApi] = None, page_size: int = 50):
        self._obs = obs
        self._messages_api = messages_api
        self._page_size = page_size
        self._conversations: dict[str, Conversation] = {}
        self._recency = RecencyIndex()
        self._active_contact_id: Optional[str] = None
        self._request_tokens: dict[str, int] = {}

    # ==================== READ ====================

    @property
    def active_contact_id(self) -> Optional[str]:
        return self._active_contact_id

    def is_selected(self, contact_id: str) -> bool:
        return self._active_contact_id == contact_id

    def get(self, contact_id: str) -> Optional[ConversationView]:
        conv = self._conversations.get(contact_id)
        return _view(conv) if conv else None

    def require(self, contact_id: str) -> ConversationView:
        return _view(self._require(contact_id))

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._conversations

    def recency(self) -> list[str]:
        return self._recency.ordered()

    def conversations(self) -> list[ConversationView]:
        return [_view(self._conversations[c]) for c in self._recency if c in self._conversations]

    def unread_count(self, contact_id: str) -> int:
        conv = self._conversations.get(contact_id)
        return conv.unread_count if conv else 0

    def unread_index(self) -> dict[str, int]:
        return {c.contact_id: c.unread_count for c in self._conversations.values() if c.unread_count > 0}

    def has_tag(self, contact_id: str, tag_id: str) -> bool:
        conv = self._conversations.get(contact_id)
        return bool(conv and tag_id in conv.tags)

    # ==================== CONTACT LIST ====================

    def seed_contacts(self, contacts: Iterable[ContactSnapshot]) -> int:
        """Carga inicial da lista (já ordenada por recência pelo servidor)."""
        added = 0
        for contact in contacts:
            if contact.id in self._conversations:
                self._conversations[contact.id].contact = contact
            else:
                self._conversations[contact.id] = Conversation.from_contact(contact.id, contact)
                added += 1
            self._recency.extend([contact.id])
        return added

    # ==================== SELECTION ====================

    def select(self, contact_id: Optional[str]) -> Optional[str]:
        previous = self._active_contact_id
        if previous and previous != contact_id:
            # Respostas em voo da conversa anterior passam a ser obsoletas
            self._bump_token(previous)
        self._active_contact_id = contact_id
        if contact_id:
            self._ensure(contact_id, None)
            self.mark_all_read(contact_id)
        return previous

    def mark_all_read(self, contact_id: str) -> None:
        conv = self._conversations.get(contact_id)
        if conv:
            conv.unread_count = 0

    # ==================== PAGINATION ====================

    async def load_initial(self, contact_id: str, limit: Optional[int] = None) -> PageResult:
        token = self._bump_token(contact_id)
        page = await self._api().list_messages(contact_id, limit=limit or self._page_size)
        if self._request_tokens.get(contact_id) != token:
            self._obs.info("store.load_initial.stale", ctx=LogContext(contact_id=contact_id), token=token)
            return PageResult(contact_id=contact_id, applied=False)
        return self.replace_messages(contact_id, page)

    async def load_older(
        self,
        contact_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> PageResult:
        conv = self._require(contact_id)
        cursor = before or conv.oldest_loaded_at
        if cursor is None:
            return PageResult(contact_id=contact_id, applied=False, has_more_before=conv.has_more_before)
        token = self._bump_token(contact_id)
        page = await self._api().list_messages(contact_id, limit=limit or self._page_size, before=cursor)
        if self._request_tokens.get(contact_id) != token or not self.is_selected(contact_id):
            self._obs.info("store.load_older.stale", ctx=LogContext(contact_id=contact_id), token=token)
            return PageResult(contact_id=contact_id, applied=False)
        return self.prepend_page(contact_id, page)

    def replace_messages(self, contact_id: str, page: MessagePage) -> PageResult:
        conv, _ = self._ensure(contact_id, None)
        fresh = sorted(_dedupe(page.messages), key=lambda m: m.created_at)
        fresh_ids = {m.id for m in fresh}
        newest = fresh[-1].created_at if fresh else None

        # Preserva o que chegou ao vivo (ou foi enviado) enquanto a página carregava
        carried = [
            m
            for m in conv.messages
            if m.id not in fresh_ids
            and (m.local or m.status == "sending" or newest is None or m.created_at > newest)
        ]
        merged = fresh + carried
        merged.sort(key=lambda m: m.created_at)

        conv.messages = merged
        conv.message_ids = {m.id for m in merged}
        conv.oldest_loaded_at = merged[0].created_at if merged else None
        conv.has_more_before = bool(page.has_more) and bool(fresh)
        return PageResult(contact_id=contact_id, applied=True, added=len(fresh), has_more_before=conv.has_more_before)

    def prepend_page(self, contact_id: str, page: MessagePage) -> PageResult:
        conv = self._require(contact_id)
        older = sorted(
            (m for m in _dedupe(page.messages) if m.id not in conv.message_ids),
            key=lambda m: m.created_at,
        )
        if not older:
            conv.has_more_before = False if not page.messages else bool(page.has_more)
            return PageResult(contact_id=contact_id, applied=True, added=0, has_more_before=conv.has_more_before)

        if conv.messages and older[-1].created_at > conv.messages[0].created_at:
            self._obs.warning("store.load_older.overlap", ctx=LogContext(contact_id=contact_id), count=len(older))
            conv.messages = sorted(older + conv.messages, key=lambda m: m.created_at)
        else:
            conv.messages[0:0] = older
        conv.message_ids.update(m.id for m in older)
        conv.oldest_loaded_at = conv.messages[0].created_at
        conv.has_more_before = bool(page.has_more)
        return PageResult(contact_id=contact_id, applied=True, added=len(older), has_more_before=conv.has_more_before)

    # ==================== OPTIMISTIC SEND ====================

    def append_optimistic(self, contact_id: str, draft: OutboundDraft) -> str:
        conv = self._require(contact_id)
        temp_id = f"tmp-{uuid.uuid4()}"
        created_at = utcnow()
        if conv.messages and conv.messages[-1].created_at > created_at:
            created_at = conv.messages[-1].created_at
        message = Message(
            id=temp_id,
            direction="outbound-note" if draft.kind == "note" else "outbound-reply",
            text=draft.text,
            media=draft.media,
            status="sending",
            created_at=created_at,
            author_id=draft.author_id,
            author_name=draft.author_name,
            channel_id=draft.channel_id or conv.channel_ref,
            local=True,
        )
        conv.messages.append(message)
        conv.message_ids.add(temp_id)
        conv.last_activity_at = created_at
        return temp_id

    def confirm_send(
        self,
        contact_id: str,
        temp_id: str,
        final_status: MessageStatus,
        external_id: Optional[str] = None,
    ) -> Message:
        if final_status not in ("sent", "error"):
            raise ValueError(f"status final inválido: {final_status}")
        conv = self._require(contact_id)
        if temp_id in conv.reconciled:
            # O eco do stream já confirmou esta mensagem
            idx = _find_index(conv.messages, conv.reconciled[temp_id])
            if idx is None:
                raise MessageNotFoundError(contact_id, temp_id)
            return conv.messages[idx]

        idx = _find_index(conv.messages, temp_id)
        if idx is None:
            raise MessageNotFoundError(contact_id, temp_id)
        current = conv.messages[idx]
        if current.inbound:
            raise ValueError("mensagens recebidas são imutáveis")
        if external_id:
            echo_idx = self._find_echo(conv, external_id, exclude=temp_id)
            if echo_idx is not None:
                return self._merge_early_echo(conv, idx, echo_idx)
        updated = current.model_copy(
            update={"status": final_status, "external_id": external_id or current.external_id}
        )
        conv.messages[idx] = updated
        return updated

    # ==================== LIVE EVENTS ====================

    def apply_inbound(
        self,
        contact_id: str,
        message: Message,
        contact: Optional[ContactSnapshot] = None,
    ) -> ApplyResult:
        conv, created = self._ensure(contact_id, contact)
        log_ctx = LogContext(contact_id=contact_id)

        if message.id in conv.message_ids:
            self._obs.debug("store.inbound.duplicate", ctx=log_ctx, message_id=message.id)
            return ApplyResult(contact_id=contact_id, applied=False, created=created)

        if message.outbound and message.external_id:
            temp_id = self._reconcile_echo(conv, message)
            if temp_id:
                self._recency.bubble(contact_id)
                return ApplyResult(
                    contact_id=contact_id,
                    applied=True,
                    created=created,
                    reconciled_temp_id=temp_id,
                    message=message,
                )

        _insert_ordered(conv.messages, message)
        conv.message_ids.add(message.id)
        conv.last_activity_at = message.created_at
        if conv.oldest_loaded_at is None:
            conv.oldest_loaded_at = message.created_at
        if conv.channel_ref is None and message.channel_id:
            conv.channel_ref = message.channel_id

        delivered_live = False
        if message.inbound:
            if self.is_selected(contact_id):
                delivered_live = True
            else:
                conv.unread_count += 1

        self._recency.bubble(contact_id)
        return ApplyResult(
            contact_id=contact_id,
            applied=True,
            delivered_live=delivered_live,
            created=created,
            message=message,
        )

    def apply_conversation_update(self, contact_id: str, patch: ConversationPatch) -> bool:
        conv = self._conversations.get(contact_id)
        if conv is None:
            self._obs.debug("store.update.unknown_contact", ctx=LogContext(contact_id=contact_id))
            return False

        changes = patch.changes()
        bubbles = False
        if "status" in changes and changes["status"] is not None:
            bubbles = conv.status != changes["status"]
            conv.status = changes["status"]
        if "assignee_id" in changes:
            bubbles = bubbles or conv.assignee_id != changes["assignee_id"]
            conv.assignee_id = changes["assignee_id"]
            conv.assignee_name = changes.get("assignee_name") if changes["assignee_id"] else None
        elif "assignee_name" in changes:
            conv.assignee_name = changes["assignee_name"]
        if "tags" in changes and changes["tags"] is not None:
            new_tags = set(changes["tags"])
            bubbles = bubbles or new_tags != conv.tags
            conv.tags = new_tags
        if "bot_active" in changes and changes["bot_active"] is not None:
            conv.bot_active = changes["bot_active"]

        if bubbles:
            self._recency.bubble(contact_id)
        return True

    def add_tag(self, contact_id: str, tag_id: str) -> bool:
        conv = self._require(contact_id)
        if tag_id in conv.tags:
            return False
        conv.tags.add(tag_id)
        self._recency.bubble(contact_id)
        return True

    def remove_tag(self, contact_id: str, tag_id: str) -> bool:
        conv = self._require(contact_id)
        if tag_id not in conv.tags:
            return False
        conv.tags.discard(tag_id)
        return True

    # ==================== INTERNALS ====================

    def _api(self) -> MessagesApi:
        if self._messages_api is None:
            raise RuntimeError("ConversationStore sem MessagesApi configurada.")
        return self._messages_api

    def _require(self, contact_id: str) -> Conversation:
        conv = self._conversations.get(contact_id)
        if conv is None:
            raise ConversationNotFoundError(contact_id)
        return conv

    def _ensure(self, contact_id: str, contact: Optional[ContactSnapshot]) -> tuple[Conversation, bool]:
        conv = self._conversations.get(contact_id)
        if conv is not None:
            if contact is not None and conv.contact is None:
                conv.contact = contact
                conv.channel_ref = conv.channel_ref or contact.channel_id
            return conv, False
        conv = Conversation.from_contact(contact_id, contact)
        self._conversations[contact_id] = conv
        self._recency.bubble(contact_id)
        return conv, True

    def _bump_token(self, contact_id: str) -> int:
        token = self._request_tokens.get(contact_id, 0) + 1
        self._request_tokens[contact_id] = token
        return token

    def _reconcile_echo(self, conv: Conversation, message: Message) -> Optional[str]:
        for idx in range(len(conv.messages) - 1, -1, -1):
            current = conv.messages[idx]
            if current.local and current.external_id == message.external_id:
                status: MessageStatus = "error" if message.status == "error" else "sent"
                conv.messages[idx] = current.model_copy(update={"id": message.id, "status": status, "local": False})
                conv.message_ids.discard(current.id)
                conv.message_ids.add(message.id)
                conv.reconciled[current.id] = message.id
                return current.id
        return None

    def _find_echo(self, conv: Conversation, external_id: str, *, exclude: str) -> Optional[int]:
        for idx in range(len(conv.messages) - 1, -1, -1):
            current = conv.messages[idx]
            if current.id != exclude and current.outbound and not current.local and current.external_id == external_id:
                return idx
        return None

    def _merge_early_echo(self, conv: Conversation, temp_idx: int, echo_idx: int) -> Message:
        """O eco chegou antes da confirmação: a mensagem otimista assume o id do store."""
        temp = conv.messages[temp_idx]
        echo = conv.messages[echo_idx]
        merged = temp.model_copy(
            update={"id": echo.id, "status": echo.status, "external_id": echo.external_id, "local": False}
        )
        conv.messages[temp_idx] = merged
        del conv.messages[echo_idx]
        conv.message_ids.discard(temp.id)
        conv.message_ids.add(echo.id)
        conv.reconciled[temp.id] = echo.id
        self._obs.debug("store.send.early_echo", ctx=LogContext(contact_id=conv.contact_id), message_id=echo.id)
        return merged


def _view(conv: Conversation) -> ConversationView:
    return ConversationView(
        contact_id=conv.contact_id,
        contact=conv.contact,
        messages=tuple(conv.messages),
        status=conv.status,
        assignee_id=conv.assignee_id,
        assignee_name=conv.assignee_name,
        tags=frozenset(conv.tags),
        unread_count=conv.unread_count,
        channel_ref=conv.channel_ref,
        oldest_loaded_at=conv.oldest_loaded_at,
        has_more_before=conv.has_more_before,
        bot_active=conv.bot_active,
    )


def _dedupe(messages: Iterable[Message]) -> list[Message]:
    seen: set[str] = set()
    out: list[Message] = []
    for m in messages:
        if m.id in seen:
            continue
        seen.add(m.id)
        out.append(m)
    return out


def _find_index(messages: list[Message], message_id: str) -> Optional[int]:
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].id == message_id:
            return idx
    return None


def _insert_ordered(messages: list[Message], message: Message) -> None:
    # Quase sempre cai no final; só recua quando o stream entrega fora de ordem
    idx = len(messages)
    while idx > 0 and messages[idx - 1].created_at > message.created_at:
        idx -= 1
    messages.insert(idx, message)
