from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import pytest

from inbox_engine.bus import BusHandlers, EventBusClient, decode_frame, iter_sse_data
from inbox_engine.config import ReconnectPolicy
from inbox_engine.errors import FrameDecodeError, TransportError
from inbox_engine.models.events import ConversationUpdatedEvent, NewMessageEvent, PresenceTypingEvent


def _new_message_frame(message_id: str, contact_id: str = "c1", **extra: Any) -> str:
    return json.dumps(
        {
            "type": "new_message",
            "contactId": contact_id,
            "message": {
                "id": message_id,
                "direction": "inbound",
                "type": "text",
                "content": f"olá {message_id}",
                "status": "sent",
                "createdAt": "2024-05-06T12:00:00Z",
                "channelId": "ch-1",
            },
            **extra,
        }
    )


class ScriptedTransport:
    """Cada chamada a ``frames`` consome um roteiro: lista de frames ou exceção.

    Quando o roteiro acaba a conexão fica aberta até ser cancelada.
    """

    def __init__(self, *scripts: Any):
        self._scripts = list(scripts)
        self.opens = 0

    async def frames(
        self, org_id: str, *, on_open: Optional[Callable[[], Awaitable[None]]] = None
    ) -> AsyncIterator[str]:
        if not self._scripts:
            if on_open is not None:
                await on_open()
            await asyncio.Event().wait()
            return
        script = self._scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        self.opens += 1
        if on_open is not None:
            await on_open()
        for frame in script:
            yield frame


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


# ==================== DECODER ====================

def test_decode_new_message_maps_direction_and_contact() -> None:
    event = decode_frame(_new_message_frame("m1", contact={"id": "c1", "name": "Ana", "convStatus": "pending"}))

    assert isinstance(event, NewMessageEvent)
    assert event.message.inbound is True
    assert event.message.text == "olá m1"
    assert event.contact.conv_status == "pending"
    assert event.display_name == "Ana"


def test_decode_accepts_legacy_type_names() -> None:
    updated = decode_frame({"type": "conv_updated", "contactId": "c1", "convStatus": "resolved"})
    typing = decode_frame({"type": "user_typing", "contactId": "c1", "userId": "op-2", "isTyping": True})

    assert isinstance(updated, ConversationUpdatedEvent)
    assert updated.to_patch().changes() == {"status": "resolved"}
    assert isinstance(typing, PresenceTypingEvent)
    assert typing.operator_id == "op-2"


def test_decode_unwraps_data_envelope() -> None:
    event = decode_frame({"data": {"type": "presence_left", "contactId": "c1", "operatorId": "op-2"}})
    assert event.kind == "presence_left"

    nested = decode_frame({"type": "conversation_updated", "data": {"contactId": "c9", "assignedToId": "op-1"}})
    assert nested.contact_id == "c9"
    assert nested.to_patch().changes() == {"assignee_id": "op-1", "assignee_name": None}


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2]",
        json.dumps({"contactId": "c1"}),
        json.dumps({"type": "unknown_kind", "contactId": "c1"}),
        json.dumps({"type": "new_message", "contactId": "c1"}),
    ],
)
def test_decode_rejects_malformed_frames(frame: str) -> None:
    with pytest.raises(FrameDecodeError):
        decode_frame(frame)


def test_outbound_message_without_user_is_agent_authored() -> None:
    frame = json.loads(_new_message_frame("m1"))
    frame["message"].update({"direction": "outbound", "type": "text"})
    agent = decode_frame(frame).message

    frame["message"]["user"] = {"id": "op-1", "name": "Bia"}
    operator = decode_frame(frame).message

    frame["message"]["type"] = "note"
    note = decode_frame(frame).message

    assert agent.agent_authored is True
    assert operator.operator_authored is True
    assert note.note is True


# ==================== SSE ====================

@pytest.mark.anyio
async def test_iter_sse_data_joins_data_lines_and_skips_comments() -> None:
    async def lines():
        for line in [": keep-alive", "event: message", 'data: {"a":', "data: 1}", "", "", "data: last"]:
            yield line

    frames = [f async for f in iter_sse_data(lines())]
    assert frames == ['{"a":\n1}', "last"]


# ==================== CLIENT ====================

@pytest.mark.anyio
async def test_frames_are_handled_in_order_and_malformed_dropped(obs) -> None:
    trace: list[str] = []
    done = asyncio.Event()

    async def on_new_message(event: NewMessageEvent) -> None:
        trace.append(f"start:{event.message.id}")
        await asyncio.sleep(0.01)
        trace.append(f"end:{event.message.id}")
        if event.message.id == "m3":
            done.set()

    transport = ScriptedTransport([_new_message_frame("m1"), "{broken", _new_message_frame("m2"), _new_message_frame("m3")])
    client = EventBusClient(transport=transport, obs=obs, sleep=RecordingSleep())
    handle = client.subscribe("org-1", BusHandlers(on_new_message=on_new_message))

    await asyncio.wait_for(done.wait(), 1.0)
    await client.close(handle)

    assert trace == ["start:m1", "end:m1", "start:m2", "end:m2", "start:m3", "end:m3"]
    assert handle.frames_dropped == 1
    assert handle.frames_received == 4


@pytest.mark.anyio
async def test_handler_error_does_not_stop_subscription(obs) -> None:
    seen: list[str] = []

    def on_new_message(event: NewMessageEvent) -> None:
        seen.append(event.message.id)
        if event.message.id == "m1":
            raise RuntimeError("handler quebrado")

    transport = ScriptedTransport([_new_message_frame("m1"), _new_message_frame("m2")])
    client = EventBusClient(transport=transport, obs=obs, sleep=RecordingSleep())
    handle = client.subscribe("org-1", BusHandlers(on_new_message=on_new_message))

    await _wait_for(lambda: len(seen) == 2)
    await client.close(handle)
    assert seen == ["m1", "m2"]


@pytest.mark.anyio
async def test_reconnect_backoff_is_exponential_and_capped(obs) -> None:
    statuses: list[bool] = []
    sleep = RecordingSleep()
    transport = ScriptedTransport(*[TransportError("queda") for _ in range(5)])
    client = EventBusClient(
        transport=transport,
        obs=obs,
        policy=ReconnectPolicy(initial_delay_s=1.0, max_delay_s=4.0, jitter_s=0.0),
        sleep=sleep,
    )
    handle = client.subscribe("org-1", BusHandlers(on_status=statuses.append))

    await _wait_for(lambda: handle.connected)
    await client.close_all()

    assert sleep.delays == [1.0, 2.0, 4.0, 4.0, 4.0]
    assert statuses == [True]
    assert handle.connects == 1


@pytest.mark.anyio
async def test_successful_connection_resets_backoff(obs) -> None:
    statuses: list[bool] = []
    sleep = RecordingSleep()
    transport = ScriptedTransport(
        TransportError("queda"),
        [_new_message_frame("m1")],
        TransportError("queda"),
    )
    client = EventBusClient(
        transport=transport,
        obs=obs,
        policy=ReconnectPolicy(initial_delay_s=1.0, max_delay_s=8.0, jitter_s=0.0),
        sleep=sleep,
    )
    handle = client.subscribe("org-1", BusHandlers(on_status=statuses.append))

    await _wait_for(lambda: handle.connects == 2)
    await client.close(handle)

    # queda → 1s; stream abre e termina → 1s; nova queda → 2s
    assert sleep.delays == [1.0, 1.0, 2.0]
    assert statuses == [True, False, True]


@pytest.mark.anyio
async def test_non_transient_error_waits_max_delay(obs) -> None:
    sleep = RecordingSleep()
    transport = ScriptedTransport(TransportError("recusado", transient=False))
    client = EventBusClient(
        transport=transport,
        obs=obs,
        policy=ReconnectPolicy(initial_delay_s=0.5, max_delay_s=6.0, jitter_s=0.0),
        sleep=sleep,
    )
    handle = client.subscribe("org-1", BusHandlers())

    await _wait_for(lambda: handle.connected)
    await client.close(handle)
    assert sleep.delays == [6.0]


@pytest.mark.anyio
async def test_jitter_is_added_to_delay(obs) -> None:
    sleep = RecordingSleep()
    transport = ScriptedTransport(TransportError("queda"))
    client = EventBusClient(
        transport=transport,
        obs=obs,
        policy=ReconnectPolicy(initial_delay_s=1.0, max_delay_s=4.0, jitter_s=0.2),
        sleep=sleep,
    )
    handle = client.subscribe("org-1", BusHandlers())

    await _wait_for(lambda: handle.connected)
    await client.close(handle)
    assert sleep.delays == [pytest.approx(1.1)]
