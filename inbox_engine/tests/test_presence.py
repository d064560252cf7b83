from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from inbox_engine.errors import CollaboratorError, ConfigError
from inbox_engine.models.events import PresenceLeftEvent, PresenceTypingEvent, PresenceViewingEvent
from inbox_engine.presence import AssignmentPrompter, CancellableTimer, PresenceTracker
from inbox_engine.store import AssignPromptPreferences

NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.events: list[tuple] = []
        self.fail = fail

    async def viewing(self, contact_id: str) -> None:
        self._emit(("viewing", contact_id))

    async def left(self, contact_id: str) -> None:
        self._emit(("left", contact_id))

    async def typing(self, contact_id: str, is_typing: bool) -> None:
        self._emit(("typing", contact_id, is_typing))

    def _emit(self, event: tuple) -> None:
        self.events.append(event)
        if self.fail:
            raise CollaboratorError("Indisponível", collaborator="presence", status_code=502, transient=True)


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _tracker(obs, publisher=None, clock=None, **kwargs) -> PresenceTracker:
    return PresenceTracker(
        operator_id="me",
        publisher=publisher or RecordingPublisher(),
        obs=obs,
        clock=clock or Clock(),
        **kwargs,
    )


# ==================== TIMER ====================

@pytest.mark.anyio
async def test_timer_rearm_replaces_previous_schedule() -> None:
    fired: list[str] = []
    timer = CancellableTimer()

    timer.arm(0.05, lambda: fired.append("first"))
    timer.arm(0.05, lambda: fired.append("second"))
    await asyncio.sleep(0.12)

    assert fired == ["second"]
    assert timer.armed is False


@pytest.mark.anyio
async def test_timer_cancel_prevents_callback() -> None:
    fired: list[int] = []
    timer = CancellableTimer()
    timer.arm(0.02, lambda: fired.append(1))
    timer.cancel()
    await asyncio.sleep(0.05)
    assert fired == []


@pytest.mark.anyio
async def test_timer_async_callback_failure_is_logged(caplog) -> None:
    async def boom() -> None:
        raise RuntimeError("falhou")

    timer = CancellableTimer()
    with caplog.at_level(logging.ERROR, logger="inbox_engine.presence.timers"):
        timer.arm(0.01, boom)
        await asyncio.sleep(0.05)

    assert timer.armed is False
    assert any("falhou" in r.getMessage() for r in caplog.records)


# ==================== LOCAL OPERATOR ====================

@pytest.mark.anyio
async def test_typing_is_published_once_and_expires(obs) -> None:
    publisher = RecordingPublisher()
    tracker = _tracker(obs, publisher, typing_idle_s=0.05)

    for _ in range(4):
        await tracker.set_typing("c1", True)
        await asyncio.sleep(0.02)
    assert publisher.events == [("typing", "c1", True)]
    assert tracker.is_typing("c1") is True

    await asyncio.sleep(0.1)
    assert publisher.events == [("typing", "c1", True), ("typing", "c1", False)]
    assert tracker.is_typing("c1") is False


@pytest.mark.anyio
async def test_explicit_stop_typing_cancels_expiry(obs) -> None:
    publisher = RecordingPublisher()
    tracker = _tracker(obs, publisher, typing_idle_s=0.05)

    await tracker.set_typing("c1", True)
    await tracker.set_typing("c1", False)
    await asyncio.sleep(0.08)

    assert publisher.events == [("typing", "c1", True), ("typing", "c1", False)]


@pytest.mark.anyio
async def test_stop_viewing_clears_typing_first(obs) -> None:
    publisher = RecordingPublisher()
    tracker = _tracker(obs, publisher)

    await tracker.start_viewing("c1")
    await tracker.set_typing("c1", True)
    await tracker.stop_viewing("c1")
    await tracker.stop()

    assert publisher.events == [
        ("viewing", "c1"),
        ("typing", "c1", True),
        ("typing", "c1", False),
        ("left", "c1"),
    ]


@pytest.mark.anyio
async def test_publish_failure_is_not_raised(obs) -> None:
    tracker = _tracker(obs, RecordingPublisher(fail=True))
    await tracker.start_viewing("c1")
    await tracker.stop_viewing("c1")


# ==================== REMOTE OPERATORS ====================

def test_remote_viewing_typing_and_left(obs) -> None:
    tracker = _tracker(obs)

    tracker.apply_remote(PresenceViewingEvent(contact_id="c1", operator_id="op-2", operator_name="Bia"))
    tracker.apply_remote(PresenceTypingEvent(contact_id="c1", operator_id="op-2", is_typing=True, text="Olá"))

    [record] = tracker.viewers("c1")
    assert record.state == "typing"
    assert record.text == "Olá"
    assert record.operator_name == "Bia"

    tracker.apply_remote(PresenceTypingEvent(contact_id="c1", operator_id="op-2", is_typing=False))
    assert tracker.viewers("c1")[0].state == "viewing"

    tracker.apply_remote(PresenceLeftEvent(contact_id="c1", operator_id="op-2"))
    assert tracker.viewers("c1") == []
    assert tracker.all_records() == {}


def test_own_presence_events_are_ignored(obs) -> None:
    tracker = _tracker(obs)
    assert tracker.apply_remote(PresenceViewingEvent(contact_id="c1", operator_id="me")) is None
    assert tracker.viewers("c1") == []


def test_presence_event_accepts_user_id_alias() -> None:
    event = PresenceViewingEvent.model_validate({"contactId": "c1", "userId": "op-3", "userName": "Caio"})
    assert event.operator_id == "op-3"
    assert event.operator_name == "Caio"


def test_tick_increments_view_duration(obs) -> None:
    tracker = _tracker(obs, tick_s=1.0)
    tracker.apply_remote(PresenceViewingEvent(contact_id="c1", operator_id="op-2"))

    for _ in range(3):
        tracker.tick()

    assert tracker.viewers("c1")[0].view_duration_s == 3.0
    assert tracker.viewers("c1")[0].as_dict()["viewDuration"] == 3


def test_tick_sweeps_records_past_ttl(obs) -> None:
    clock = Clock()
    tracker = _tracker(obs, clock=clock, ttl_s=60)
    tracker.apply_remote(PresenceViewingEvent(contact_id="c1", operator_id="op-2"))
    tracker.apply_remote(PresenceViewingEvent(contact_id="c2", operator_id="op-3"))

    clock.now = NOW + timedelta(seconds=45)
    tracker.apply_remote(PresenceTypingEvent(contact_id="c2", operator_id="op-3", is_typing=True))

    clock.now = NOW + timedelta(seconds=90)
    removed = tracker.tick()

    assert removed == 1
    assert set(tracker.all_records()) == {"c2"}


@pytest.mark.anyio
async def test_periodic_tick_runs_in_background(obs) -> None:
    tracker = _tracker(obs, tick_s=0.01)
    tracker.apply_remote(PresenceViewingEvent(contact_id="c1", operator_id="op-2"))

    tracker.start()
    await asyncio.sleep(0.06)
    await tracker.stop()

    assert tracker.viewers("c1")[0].view_duration_s > 0


# ==================== ASSIGNMENT PROMPT ====================

def test_prompt_on_first_reply_and_every_nth() -> None:
    prompter = AssignmentPrompter(AssignPromptPreferences(), every=10)

    shown = [n for n in range(1, 26) if prompter.on_reply_sent("me", "c1", None)]

    assert shown == [1, 11, 21]


def test_prompt_skipped_when_conversation_is_assigned() -> None:
    prompter = AssignmentPrompter(AssignPromptPreferences(), every=3)
    assert prompter.on_reply_sent("me", "c1", "op-2") is False
    assert prompter.replies("me", "c1") == 1


def test_opt_out_is_per_contact() -> None:
    prompter = AssignmentPrompter(AssignPromptPreferences(), every=1)
    prompter.opt_out("me", "c1")

    assert prompter.on_reply_sent("me", "c1", None) is False
    assert prompter.on_reply_sent("me", "c2", None) is True


def test_opt_out_survives_reload(tmp_path) -> None:
    path = tmp_path / "prefs.json"
    AssignPromptPreferences(str(path)).opt_out("me", "c1")

    reloaded = AssignPromptPreferences(str(path))
    assert reloaded.opted_out("me", "c1") is True
    assert reloaded.opted_out("me", "c2") is False


def test_preferences_with_unexpected_shape_are_rejected(tmp_path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ConfigError):
        AssignPromptPreferences(str(path))
