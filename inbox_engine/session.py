"""Sessão do operador: liga o stream de eventos ao store, às regras e à presença.

É o único ponto que recebe eventos do ``EventBusClient`` e também o dono do
caminho de envio (resposta otimista → canal → confirmação).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .api.channels import ChannelsApi, extract_external_id
from .api.contacts import ContactsApi
from .api.messages import MessagesApi
from .bus.client import BusHandlers, EventBusClient, SubscriptionHandle
from .errors import InboxError
from .models.conversations import ContactSnapshot, ConversationPatch
from .models.events import ConversationUpdatedEvent, NewMessageEvent, PresenceEvent
from .models.messages import MediaDescriptor, Message, OutboundDraft
from .notifications import NotificationKind, Notifier, preview
from .observability import LogContext, Observability
from .presence.assignment import AssignmentPrompter
from .presence.tracker import PresenceTracker
from .rules.engine import RuleEngine
from .store.conversation_store import ConversationStore, ConversationView, PageResult


@dataclass(frozen=True)
class SendReceipt:
    contact_id: str
    temp_id: str
    ask_to_assign: bool = False
    task: Optional[asyncio.Task] = field(default=None, compare=False, repr=False)


class InboxSession:
    def __init__(
        self,
        *,
        org_id: str,
        operator_id: str,
        store: ConversationStore,
        bus: EventBusClient,
        rules: RuleEngine,
        presence: PresenceTracker,
        prompter: AssignmentPrompter,
        notifier: Notifier,
        messages_api: MessagesApi,
        contacts_api: ContactsApi,
        channels_api: ChannelsApi,
        obs: Observability,
        operator_name: Optional[str] = None,
    ):
        self.org_id = org_id
        self.operator_id = operator_id
        self.operator_name = operator_name
        self.store = store
        self.bus = bus
        self.rules = rules
        self.presence = presence
        self.prompter = prompter
        self.notifier = notifier
        self._messages = messages_api
        self._contacts = contacts_api
        self._channels = channels_api
        self._obs = obs

        self._subscription: Optional[SubscriptionHandle] = None
        self._connected = False
        self._page_tasks: dict[str, asyncio.Task] = {}
        self._send_tasks: set[asyncio.Task] = set()

    # ==================== LIFECYCLE ====================

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def subscription(self) -> Optional[SubscriptionHandle]:
        return self._subscription

    async def start(self, contacts: Iterable[ContactSnapshot] = ()) -> None:
        self.store.seed_contacts(contacts)
        if self._subscription is None:
            self._subscription = self.bus.subscribe(self.org_id, self.handlers())
        self.presence.start()
        self._obs.info("session.started", ctx=self._ctx())

    async def stop(self) -> None:
        if self._subscription is not None:
            await self.bus.close(self._subscription)
            self._subscription = None
        self._cancel_pagination()
        await self.presence.stop()
        if self._send_tasks:
            await asyncio.gather(*list(self._send_tasks), return_exceptions=True)
        self._obs.info("session.stopped", ctx=self._ctx())

    def handlers(self) -> BusHandlers:
        return BusHandlers(
            on_new_message=self.on_new_message,
            on_conversation_updated=self.on_conversation_updated,
            on_presence_viewing=self.on_presence,
            on_presence_left=self.on_presence,
            on_presence_typing=self.on_presence,
            on_status=self.on_status,
        )

    # ==================== BUS HANDLERS ====================

    async def on_new_message(self, event: NewMessageEvent) -> None:
        message = event.message
        result = self.store.apply_inbound(event.contact_id, message, event.contact)
        if not result.applied:
            return
        if message.inbound and not result.delivered_live:
            self.notifier.notify(
                "new_message",
                event.display_name,
                preview(message.text or _media_label(message)),
                contact_id=event.contact_id,
            )
        await self.rules.handle_message(
            event.contact_id,
            message,
            channel_id=event.channel_id or message.channel_id,
        )

    def on_conversation_updated(self, event: ConversationUpdatedEvent) -> None:
        self.store.apply_conversation_update(event.contact_id, event.to_patch())

    def on_presence(self, event: PresenceEvent) -> None:
        self.presence.apply_remote(event)

    def on_status(self, connected: bool) -> None:
        self._connected = connected
        if connected:
            self.notifier.notify("connection_status", "Conectado ao servidor de eventos")
        else:
            self.notifier.notify("connection_status", "Reconectando…", level="warning")

    # ==================== NAVIGATION ====================

    async def open_conversation(self, contact_id: str) -> ConversationView:
        previous = self.store.select(contact_id)
        self._cancel_pagination(keep=contact_id)
        if previous and previous != contact_id:
            await self.presence.stop_viewing(previous)
        await self.presence.start_viewing(contact_id)

        await self._run_page(contact_id, self.store.load_initial(contact_id))

        view = self.store.require(contact_id)
        if view.status == "pending":
            try:
                await self._contacts.open(contact_id)
            except InboxError as e:
                self._obs.warning("session.open.failed", ctx=self._ctx(contact_id), code=e.code)
            else:
                self.store.apply_conversation_update(contact_id, ConversationPatch(status="open"))
        return self.store.require(contact_id)

    async def close_conversation(self) -> None:
        previous = self.store.select(None)
        self._cancel_pagination()
        if previous:
            await self.presence.stop_viewing(previous)

    async def load_older(self, contact_id: Optional[str] = None) -> PageResult:
        contact_id = contact_id or self.store.active_contact_id
        if not contact_id:
            raise ValueError("nenhuma conversa selecionada")
        return await self._run_page(contact_id, self.store.load_older(contact_id))

    async def _run_page(self, contact_id: str, coro) -> PageResult:
        task = asyncio.ensure_future(coro)
        self._page_tasks[contact_id] = task
        try:
            await asyncio.wait({task})
        finally:
            if self._page_tasks.get(contact_id) is task:
                del self._page_tasks[contact_id]
        if task.cancelled():
            self._obs.info("session.page.cancelled", ctx=self._ctx(contact_id))
            return PageResult(contact_id=contact_id, applied=False)
        return task.result()

    def _cancel_pagination(self, keep: Optional[str] = None) -> None:
        for contact_id, task in list(self._page_tasks.items()):
            if contact_id != keep and not task.done():
                task.cancel()

    # ==================== SENDING ====================

    def send_reply(
        self,
        text: str,
        *,
        media: Optional[MediaDescriptor] = None,
        contact_id: Optional[str] = None,
    ) -> SendReceipt:
        """Anexa a resposta otimista e dispara o envio em segundo plano.

        O envio não é cancelado ao trocar de conversa; a confirmação sempre
        volta para a conversa de origem.
        """
        contact_id = contact_id or self.store.active_contact_id
        if not contact_id:
            raise ValueError("nenhuma conversa selecionada")
        view = self.store.require(contact_id)
        temp_id = self.store.append_optimistic(
            contact_id,
            OutboundDraft(
                text=text,
                kind="reply",
                media=media,
                author_id=self.operator_id,
                author_name=self.operator_name,
                channel_id=view.channel_ref,
            ),
        )
        self.rules.note_human_reply(contact_id)
        ask = self.prompter.on_reply_sent(self.operator_id, contact_id, view.assignee_id)

        task = asyncio.get_running_loop().create_task(
            self._deliver(contact_id, temp_id, text=text, media=media, channel_id=view.channel_ref, number=view.number)
        )
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return SendReceipt(contact_id=contact_id, temp_id=temp_id, ask_to_assign=ask, task=task)

    async def _deliver(
        self,
        contact_id: str,
        temp_id: str,
        *,
        text: str,
        media: Optional[MediaDescriptor],
        channel_id: Optional[str],
        number: Optional[str],
    ) -> Message:
        log_ctx = self._ctx(contact_id)
        if not channel_id or not number:
            self._obs.warning("session.send.no_channel", ctx=log_ctx, temp_id=temp_id)
            return self._send_failed(contact_id, temp_id, "Conversa sem canal ou número de destino.")
        try:
            if media is not None:
                external_id = await self._channels.send_media(channel_id, number=number, media=media)
            else:
                external_id = await self._channels.send_text(channel_id, number=number, text=text)
        except InboxError as e:
            self._obs.warning("session.send.failed", ctx=log_ctx, temp_id=temp_id, code=e.code, transient=e.transient)
            return self._send_failed(contact_id, temp_id, e.message)

        confirmed = self.store.confirm_send(contact_id, temp_id, "sent", external_id)
        try:
            await self._messages.create_message(
                contact_id,
                content=(media.url if media and media.url else text) or "",
                type=media.type if media else "text",
                channel_id=channel_id,
            )
        except InboxError as e:
            self._obs.warning("api.messages.persist_failed", ctx=log_ctx, code=e.code, transient=e.transient)
        return confirmed

    def _send_failed(self, contact_id: str, temp_id: str, reason: str) -> Message:
        failed = self.store.confirm_send(contact_id, temp_id, "error")
        self.notifier.notify(
            "send_failed",
            "Falha ao enviar mensagem",
            reason,
            contact_id=contact_id,
            level="error",
        )
        return failed

    async def send_note(self, text: str, *, contact_id: Optional[str] = None) -> Message:
        contact_id = contact_id or self.store.active_contact_id
        if not contact_id:
            raise ValueError("nenhuma conversa selecionada")
        temp_id = self.store.append_optimistic(
            contact_id,
            OutboundDraft(text=text, kind="note", author_id=self.operator_id, author_name=self.operator_name),
        )
        try:
            data = await self._messages.create_message(contact_id, content=text, type="note")
        except InboxError as e:
            self._obs.warning("session.note.failed", ctx=self._ctx(contact_id), code=e.code)
            return self._send_failed(contact_id, temp_id, e.message)
        return self.store.confirm_send(contact_id, temp_id, "sent", extract_external_id(data))

    # ==================== CONVERSATION ACTIONS ====================

    async def assign(
        self,
        member_id: Optional[str],
        *,
        member_name: Optional[str] = None,
        contact_id: Optional[str] = None,
    ) -> bool:
        contact_id = contact_id or self.store.active_contact_id
        if not contact_id:
            raise ValueError("nenhuma conversa selecionada")
        try:
            await self._contacts.assign(contact_id, member_id)
        except InboxError as e:
            self._action_failed("assign", "assignment_failed", "Falha ao atribuir conversa", contact_id, e)
            return False
        self.store.apply_conversation_update(
            contact_id,
            ConversationPatch(assignee_id=member_id, assignee_name=member_name if member_id else None),
        )
        return True

    async def assign_to_me(self, contact_id: Optional[str] = None) -> bool:
        return await self.assign(self.operator_id, member_name=self.operator_name, contact_id=contact_id)

    async def resolve(self, contact_id: str) -> bool:
        try:
            await self._contacts.resolve(contact_id)
        except InboxError as e:
            self._action_failed("resolve", "action_failed", "Falha ao finalizar conversa", contact_id, e)
            return False
        self.store.apply_conversation_update(
            contact_id, ConversationPatch(status="resolved", assignee_id=None, assignee_name=None)
        )
        return True

    async def reopen(self, contact_id: str) -> bool:
        try:
            await self._contacts.open(contact_id)
        except InboxError as e:
            self._action_failed("reopen", "action_failed", "Falha ao reabrir conversa", contact_id, e)
            return False
        self.store.apply_conversation_update(contact_id, ConversationPatch(status="open"))
        return True

    async def add_tag(self, contact_id: str, tag_id: str) -> bool:
        if self.store.has_tag(contact_id, tag_id):
            return False
        try:
            await self._contacts.attach_tag(contact_id, tag_id)
        except InboxError as e:
            self._action_failed("add_tag", "action_failed", "Falha ao aplicar etiqueta", contact_id, e)
            return False
        return self.store.add_tag(contact_id, tag_id)

    async def set_typing(self, is_typing: bool, *, contact_id: Optional[str] = None) -> None:
        contact_id = contact_id or self.store.active_contact_id
        if contact_id:
            await self.presence.set_typing(contact_id, is_typing)

    def dismiss_assign_prompt(self, contact_id: str, *, never_ask_again: bool = False) -> None:
        if never_ask_again:
            self.prompter.opt_out(self.operator_id, contact_id)

    def resume_automation(self, contact_id: str) -> None:
        self.rules.reset(contact_id)

    def _action_failed(
        self,
        action: str,
        kind: NotificationKind,
        title: str,
        contact_id: str,
        error: InboxError,
    ) -> None:
        self._obs.warning(f"session.{action}.failed", ctx=self._ctx(contact_id), code=error.code)
        self.notifier.notify(kind, title, error.message, contact_id=contact_id, level="error")

    def _ctx(self, contact_id: Optional[str] = None) -> LogContext:
        return LogContext(org_id=self.org_id, operator_id=self.operator_id, contact_id=contact_id)


def _media_label(message: Message) -> str:
    if message.media is None:
        return ""
    return {
        "image": "📷 Imagem",
        "video": "🎥 Vídeo",
        "audio": "🎵 Áudio",
        "ptt": "🎵 Áudio",
        "document": "📄 Documento",
        "sticker": "Figurinha",
    }.get(message.media.type, "Mídia")
