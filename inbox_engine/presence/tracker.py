"""Presença e supervisão: quem está vendo ou digitando em cada conversa.

As ações do operador local (ver, sair, digitar) são publicadas para fora; os
eventos dos demais operadores chegam pelo stream e alimentam um mapa local
contactId → registros. Nada aqui é persistido.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from ..errors import InboxError
from ..models.events import PresenceEvent, PresenceLeftEvent, PresenceTypingEvent, PresenceViewingEvent
from ..models.messages import ensure_aware, utcnow
from ..models.presence import PresenceRecord
from ..observability import LogContext, Observability
from .timers import CancellableTimer


class PresencePublisher(Protocol):
    async def viewing(self, contact_id: str) -> Any: ...

    async def left(self, contact_id: str) -> Any: ...

    async def typing(self, contact_id: str, is_typing: bool) -> Any: ...


class PresenceTracker:
    def __init__(
        self,
        *,
        operator_id: str,
        publisher: PresencePublisher,
        obs: Observability,
        typing_idle_s: float = 2.0,
        tick_s: float = 1.0,
        ttl_s: float = 120.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._operator_id = operator_id
        self._publisher = publisher
        self._obs = obs
        self._typing_idle_s = typing_idle_s
        self._tick_s = tick_s
        self._ttl = timedelta(seconds=ttl_s)
        self._clock = clock

        self._records: dict[str, dict[str, PresenceRecord]] = {}
        self._viewing: set[str] = set()
        self._typing: set[str] = set()
        self._typing_timers: dict[str, CancellableTimer] = {}
        self._tick_task: Optional[asyncio.Task] = None

    # ==================== LOCAL OPERATOR ====================

    @property
    def operator_id(self) -> str:
        return self._operator_id

    def is_typing(self, contact_id: str) -> bool:
        return contact_id in self._typing

    async def start_viewing(self, contact_id: str) -> None:
        self._viewing.add(contact_id)
        await self._publish("viewing", contact_id, self._publisher.viewing(contact_id))

    async def stop_viewing(self, contact_id: str) -> None:
        if contact_id in self._typing:
            await self.set_typing(contact_id, False)
        self._viewing.discard(contact_id)
        await self._publish("left", contact_id, self._publisher.left(contact_id))

    async def set_typing(self, contact_id: str, is_typing: bool) -> None:
        timer = self._typing_timers.get(contact_id)
        if is_typing:
            if timer is None:
                timer = CancellableTimer()
                self._typing_timers[contact_id] = timer
            timer.arm(self._typing_idle_s, lambda: self._expire_typing(contact_id))
            if contact_id in self._typing:
                return
            self._typing.add(contact_id)
            await self._publish("typing", contact_id, self._publisher.typing(contact_id, True))
            return

        if timer is not None:
            timer.cancel()
        if contact_id not in self._typing:
            return
        self._typing.discard(contact_id)
        await self._publish("typing", contact_id, self._publisher.typing(contact_id, False))

    async def _expire_typing(self, contact_id: str) -> None:
        if contact_id not in self._typing:
            return
        self._obs.debug("presence.typing.expired", ctx=LogContext(contact_id=contact_id))
        self._typing.discard(contact_id)
        await self._publish("typing", contact_id, self._publisher.typing(contact_id, False))

    async def _publish(self, kind: str, contact_id: str, call: Any) -> None:
        try:
            await call
        except InboxError as e:
            # Presença é best-effort: a falha não interrompe a digitação
            self._obs.warning(
                "presence.publish.failed",
                ctx=LogContext(contact_id=contact_id, operator_id=self._operator_id),
                kind=kind,
                code=e.code,
            )

    # ==================== REMOTE OPERATORS ====================

    def apply_remote(self, event: PresenceEvent) -> Optional[PresenceRecord]:
        if event.operator_id == self._operator_id:
            return None
        now = self._clock()
        per_contact = self._records.setdefault(event.contact_id, {})

        if isinstance(event, PresenceLeftEvent):
            per_contact.pop(event.operator_id, None)
            if not per_contact:
                self._records.pop(event.contact_id, None)
            return None

        record = per_contact.get(event.operator_id)
        if isinstance(event, PresenceViewingEvent):
            since = ensure_aware(event.timestamp) if event.timestamp else now
            if record is None:
                record = PresenceRecord(
                    operator_id=event.operator_id,
                    contact_id=event.contact_id,
                    state="viewing",
                    since=since,
                    operator_name=event.operator_name,
                )
                per_contact[event.operator_id] = record
            else:
                record.state = "viewing"
                record.operator_name = event.operator_name or record.operator_name
            record.refreshed_at = now
            return record

        if isinstance(event, PresenceTypingEvent):
            if record is None:
                record = PresenceRecord(
                    operator_id=event.operator_id,
                    contact_id=event.contact_id,
                    state="viewing",
                    since=now,
                    operator_name=event.operator_name,
                )
                per_contact[event.operator_id] = record
            record.state = "typing" if event.is_typing else "viewing"
            record.text = event.text if event.is_typing else None
            record.operator_name = event.operator_name or record.operator_name
            record.refreshed_at = now
            return record
        return None

    def viewers(self, contact_id: str) -> list[PresenceRecord]:
        return sorted(self._records.get(contact_id, {}).values(), key=lambda r: r.since)

    def all_records(self) -> dict[str, list[PresenceRecord]]:
        return {contact_id: self.viewers(contact_id) for contact_id in self._records}

    # ==================== TICK ====================

    def tick(self, elapsed_s: Optional[float] = None) -> int:
        """Avança o tempo de visualização e remove registros sem atualização dentro do TTL."""
        step = self._tick_s if elapsed_s is None else elapsed_s
        now = self._clock()
        removed = 0
        for contact_id in list(self._records):
            per_contact = self._records[contact_id]
            for operator_id in list(per_contact):
                record = per_contact[operator_id]
                last_seen = record.refreshed_at or record.since
                if now - last_seen > self._ttl:
                    del per_contact[operator_id]
                    removed += 1
                    continue
                if record.state in ("viewing", "typing"):
                    record.view_duration_s += step
            if not per_contact:
                del self._records[contact_id]
        if removed:
            self._obs.debug("presence.sweep", removed=removed)
        return removed

    def start(self) -> None:
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        task, self._tick_task = self._tick_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_s)
            self.tick()
