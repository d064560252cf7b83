from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from inbox_engine.bus import EventBusClient
from inbox_engine.errors import CollaboratorError
from inbox_engine.models.conversations import ConversationPatch
from inbox_engine.models.events import (
    ConversationUpdatedEvent,
    NewMessageEvent,
    PresenceViewingEvent,
)
from inbox_engine.models.messages import MediaDescriptor, WireMessage
from inbox_engine.notifications import Notifier
from inbox_engine.presence import AssignmentPrompter, PresenceTracker
from inbox_engine.rules import ActionExecutor, RuleEngine
from inbox_engine.session import InboxSession
from inbox_engine.store import AssignPromptPreferences, ConversationStore


def _fail(name: str) -> CollaboratorError:
    return CollaboratorError(f"{name} falhou", collaborator="fake", status_code=500, transient=True)


class FakeContacts:
    def __init__(self, fail: tuple[str, ...] = ()):
        self.calls: list[tuple[Any, ...]] = []
        self._fail = set(fail)

    def _record(self, name: str, *args: Any) -> dict:
        self.calls.append((name, *args))
        if name in self._fail:
            raise _fail(name)
        return {}

    async def assign(self, contact_id: str, member_id: Optional[str]) -> dict:
        return self._record("assign", contact_id, member_id)

    async def open(self, contact_id: str) -> dict:
        return self._record("open", contact_id)

    async def resolve(self, contact_id: str) -> dict:
        return self._record("resolve", contact_id)

    async def attach_tag(self, contact_id: str, tag_id: str) -> None:
        self._record("attach_tag", contact_id, tag_id)

    async def switch_agent(self, contact_id: str, agent_id: str) -> None:
        self._record("switch_agent", contact_id, agent_id)

    async def silence(self, contact_id: str) -> None:
        self._record("silence", contact_id)


class FakeChannels:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[Any, ...]] = []
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None

    async def send_text(self, channel_id: str, *, number: str, text: str) -> Optional[str]:
        return await self._send(("text", channel_id, number, text))

    async def send_media(self, channel_id: str, *, number: str, media: MediaDescriptor) -> Optional[str]:
        return await self._send(("media", channel_id, number, media.type))

    async def send_automated(self, contact_id: str, *, channel_id: str, number: str, text: str) -> Optional[str]:
        return await self._send(("auto", channel_id, number, text))

    async def _send(self, call: tuple) -> Optional[str]:
        self.sent.append(call)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise _fail("send")
        return f"wa-{len(self.sent)}"


class SilentPublisher:
    def __init__(self):
        self.events: list[tuple] = []

    async def viewing(self, contact_id: str) -> None:
        self.events.append(("viewing", contact_id))

    async def left(self, contact_id: str) -> None:
        self.events.append(("left", contact_id))

    async def typing(self, contact_id: str, is_typing: bool) -> None:
        self.events.append(("typing", contact_id, is_typing))


class IdleTransport:
    def __init__(self):
        self.opened = asyncio.Event()

    async def frames(self, org_id: str, *, on_open=None):
        if on_open is not None:
            await on_open()
        self.opened.set()
        await asyncio.Event().wait()
        yield ""


class Rig:
    def __init__(self, obs, messages_api, make_contact, *, contacts_fail=(), channels_fail=False):
        self.messages_api = messages_api
        self.contacts = FakeContacts(fail=contacts_fail)
        self.channels = FakeChannels(fail=channels_fail)
        self.publisher = SilentPublisher()
        self.transport = IdleTransport()
        self.notifier = Notifier(obs=obs)
        self.store = ConversationStore(obs=obs, messages_api=messages_api, page_size=10)
        executor = ActionExecutor(
            store=self.store,
            assignment=self.contacts,
            tagging=self.contacts,
            messaging=self.channels,
            handoff=self.contacts,
            obs=obs,
        )
        self.session = InboxSession(
            org_id="org-1",
            operator_id="me",
            operator_name="Eu",
            store=self.store,
            bus=EventBusClient(transport=self.transport, obs=obs),
            rules=RuleEngine(executor=executor, obs=obs, notifier=self.notifier),
            presence=PresenceTracker(operator_id="me", publisher=self.publisher, obs=obs),
            prompter=AssignmentPrompter(AssignPromptPreferences(), every=3),
            notifier=self.notifier,
            messages_api=messages_api,
            contacts_api=self.contacts,
            channels_api=self.channels,
            obs=obs,
        )
        self.store.seed_contacts(
            [
                make_contact("a", name="Ana", phone="+5511911110000"),
                make_contact("b", name="Beto", conv_status="pending"),
            ]
        )


@pytest.fixture
def rig(obs, messages_api, make_contact) -> Rig:
    return Rig(obs, messages_api, make_contact)


def _event(message_id: str, contact_id: str = "a", text: str = "oi", **extra: Any) -> NewMessageEvent:
    return NewMessageEvent(
        contact_id=contact_id,
        wire_message=WireMessage(
            id=message_id,
            direction="inbound",
            content=text,
            created_at="2024-05-06T12:00:00Z",
            channel_id="ch-1",
        ),
        **extra,
    )


@pytest.mark.anyio
async def test_new_message_for_other_contact_shows_toast(rig) -> None:
    await rig.session.on_new_message(_event("m1", text="x" * 100, contact_name="Ana Paula"))

    [toast] = rig.notifier.recent(kind="new_message")
    assert toast.title == "Ana Paula"
    assert toast.description == "x" * 80 + "…"
    assert toast.contact_id == "a"
    assert rig.store.unread_count("a") == 1


@pytest.mark.anyio
async def test_new_message_for_open_contact_is_live(rig) -> None:
    await rig.session.open_conversation("a")
    await rig.session.on_new_message(_event("m1"))

    assert rig.notifier.recent(kind="new_message") == []
    assert rig.store.unread_count("a") == 0
    assert rig.store.require("a").message_ids == ["m1"]


@pytest.mark.anyio
async def test_duplicate_delivery_is_applied_once(rig) -> None:
    await rig.session.on_new_message(_event("m1"))
    await rig.session.on_new_message(_event("m1"))

    assert rig.store.require("a").message_ids == ["m1"]
    assert len(rig.notifier.recent(kind="new_message")) == 1


@pytest.mark.anyio
async def test_send_reply_confirms_and_persists(rig) -> None:
    await rig.session.open_conversation("a")

    receipt = rig.session.send_reply("Olá, tudo bem?")
    assert receipt.ask_to_assign is True
    assert rig.store.require("a").messages[-1].status == "sending"

    await receipt.task
    message = rig.store.require("a").messages[-1]
    assert message.status == "sent"
    assert message.external_id == "wa-1"
    assert rig.channels.sent == [("text", "ch-1", "5511911110000", "Olá, tudo bem?")]
    assert rig.messages_api.created[0]["content"] == "Olá, tudo bem?"


@pytest.mark.anyio
async def test_send_failure_marks_error_and_notifies(obs, messages_api, make_contact) -> None:
    rig = Rig(obs, messages_api, make_contact, channels_fail=True)
    await rig.session.open_conversation("a")

    receipt = rig.session.send_reply("oi")
    await receipt.task

    message = rig.store.require("a").messages[-1]
    assert message.id == receipt.temp_id
    assert message.status == "error"
    assert [n.kind for n in rig.notifier.recent(kind="send_failed")] == ["send_failed"]
    assert messages_api.created == []


@pytest.mark.anyio
async def test_persist_failure_after_send_keeps_message_sent(rig) -> None:
    rig.messages_api.fail_create = True
    await rig.session.open_conversation("a")

    receipt = rig.session.send_reply("oi")
    await receipt.task

    assert rig.store.require("a").messages[-1].status == "sent"


@pytest.mark.anyio
async def test_send_confirmation_targets_origin_after_switch(rig) -> None:
    await rig.session.open_conversation("a")
    rig.channels.gate = asyncio.Event()

    receipt = rig.session.send_reply("oi")
    await rig.session.open_conversation("b")
    rig.channels.gate.set()
    await receipt.task

    assert rig.store.require("a").messages[-1].status == "sent"
    assert rig.store.require("b").message_ids == []


@pytest.mark.anyio
async def test_media_reply_uses_media_send(rig) -> None:
    await rig.session.open_conversation("a")
    receipt = rig.session.send_reply("", media=MediaDescriptor(type="image", url="https://cdn/x.png"))
    await receipt.task

    assert rig.channels.sent == [("media", "ch-1", "5511911110000", "image")]
    assert rig.messages_api.created[0]["type"] == "image"


@pytest.mark.anyio
async def test_assign_prompt_cadence_and_opt_out(rig) -> None:
    await rig.session.open_conversation("a")

    prompts = []
    for _ in range(4):
        receipt = rig.session.send_reply("oi")
        prompts.append(receipt.ask_to_assign)
        await receipt.task
    assert prompts == [True, False, False, True]

    rig.session.dismiss_assign_prompt("a", never_ask_again=True)
    for _ in range(3):
        receipt = rig.session.send_reply("oi")
        assert receipt.ask_to_assign is False
        await receipt.task


@pytest.mark.anyio
async def test_opening_pending_conversation_marks_it_open(rig) -> None:
    view = await rig.session.open_conversation("b")

    assert view.status == "open"
    assert ("open", "b") in rig.contacts.calls


@pytest.mark.anyio
async def test_switching_conversation_updates_presence(rig) -> None:
    await rig.session.open_conversation("a")
    await rig.session.open_conversation("b")
    await rig.session.close_conversation()

    assert rig.publisher.events == [("viewing", "a"), ("left", "a"), ("viewing", "b"), ("left", "b")]
    assert rig.store.active_contact_id is None


@pytest.mark.anyio
async def test_pagination_is_discarded_on_switch(rig, make_message) -> None:
    rig.messages_api.queue("a", [make_message("m5", minutes=5)], has_more=True)
    rig.messages_api.queue("a", [make_message("m1", minutes=1)])
    await rig.session.open_conversation("a")

    rig.messages_api.gate = asyncio.Event()
    pending = asyncio.create_task(rig.session.load_older())
    await asyncio.sleep(0)
    switching = asyncio.create_task(rig.session.open_conversation("b"))
    await asyncio.sleep(0)
    rig.messages_api.gate.set()

    result = await pending
    await switching

    assert result.applied is False
    assert rig.store.require("a").message_ids == ["m5"]


@pytest.mark.anyio
async def test_send_note_is_persisted_without_channel(rig) -> None:
    await rig.session.open_conversation("a")
    note = await rig.session.send_note("cliente pediu retorno amanhã")

    assert note.direction == "outbound-note"
    assert note.status == "sent"
    assert rig.channels.sent == []
    assert rig.messages_api.created[0]["type"] == "note"


@pytest.mark.anyio
async def test_assign_failure_is_reported(obs, messages_api, make_contact) -> None:
    rig = Rig(obs, messages_api, make_contact, contacts_fail=("assign",))

    assert await rig.session.assign("op-2", contact_id="a") is False
    assert [n.kind for n in rig.notifier.recent()] == ["assignment_failed"]
    assert rig.store.require("a").assignee_id is None


@pytest.mark.anyio
async def test_resolve_failure_keeps_conversation_open(obs, messages_api, make_contact) -> None:
    rig = Rig(obs, messages_api, make_contact, contacts_fail=("resolve",))
    rig.store.apply_conversation_update("a", ConversationPatch(assignee_id="op-1"))

    assert await rig.session.resolve("a") is False
    assert [(n.kind, n.level) for n in rig.notifier.recent()] == [("action_failed", "error")]
    view = rig.store.require("a")
    assert view.status == "open"
    assert view.assignee_id == "op-1"


@pytest.mark.anyio
async def test_reopen_failure_keeps_status(obs, messages_api, make_contact) -> None:
    rig = Rig(obs, messages_api, make_contact, contacts_fail=("open",))
    rig.store.apply_conversation_update("a", ConversationPatch(status="resolved"))

    assert await rig.session.reopen("a") is False
    assert [n.kind for n in rig.notifier.recent()] == ["action_failed"]
    assert rig.store.require("a").status == "resolved"


@pytest.mark.anyio
async def test_add_tag_failure_leaves_tags_untouched(obs, messages_api, make_contact) -> None:
    rig = Rig(obs, messages_api, make_contact, contacts_fail=("attach_tag",))

    assert await rig.session.add_tag("b", "vip") is False
    assert [n.kind for n in rig.notifier.recent()] == ["action_failed"]
    assert rig.store.require("b").tags == frozenset()
    assert rig.contacts.calls == [("attach_tag", "b", "vip")]


@pytest.mark.anyio
async def test_assign_resolve_and_reopen(rig) -> None:
    assert await rig.session.assign_to_me("a") is True
    view = rig.store.require("a")
    assert view.assignee_id == "me"
    assert view.assignee_name == "Eu"

    await rig.session.resolve("a")
    view = rig.store.require("a")
    assert view.status == "resolved"
    assert view.assignee_id is None

    await rig.session.reopen("a")
    assert rig.store.require("a").status == "open"


@pytest.mark.anyio
async def test_add_tag_from_operator_is_idempotent(rig) -> None:
    assert await rig.session.add_tag("b", "vip") is True
    assert await rig.session.add_tag("b", "vip") is False
    assert rig.contacts.calls == [("attach_tag", "b", "vip")]


@pytest.mark.anyio
async def test_update_and_presence_handlers_delegate(rig) -> None:
    rig.session.on_conversation_updated(
        ConversationUpdatedEvent(contact_id="a", assignee_id="op-2", assignee_name="Bia")
    )
    rig.session.on_presence(PresenceViewingEvent(contact_id="a", operator_id="op-2"))

    assert rig.store.require("a").assignee_name == "Bia"
    assert [r.operator_id for r in rig.session.presence.viewers("a")] == ["op-2"]


@pytest.mark.anyio
async def test_start_subscribes_and_reports_connection(rig) -> None:
    await rig.session.start()
    await asyncio.wait_for(rig.transport.opened.wait(), 1.0)

    assert rig.session.connected is True
    assert [n.kind for n in rig.notifier.recent()] == ["connection_status"]

    await rig.session.stop()
    assert rig.session.subscription is None
