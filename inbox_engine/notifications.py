"""Avisos não bloqueantes para o operador (toasts e canal de erros)."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal, Optional

from .models.messages import utcnow
from .observability import LogContext, Observability

NotificationKind = Literal["new_message", "send_failed", "action_failed", "assignment_failed", "connection_status"]
NotificationLevel = Literal["info", "warning", "error"]

PREVIEW_CHARS = 80


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    title: str
    description: str = ""
    contact_id: Optional[str] = None
    level: NotificationLevel = "info"
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "contactId": self.contact_id,
            "level": self.level,
            "createdAt": self.created_at.isoformat(),
        }


Sink = Callable[[Notification], None]


class Notifier:
    def __init__(self, *, obs: Observability, max_items: int = 200):
        self._obs = obs
        self._items: deque[Notification] = deque(maxlen=max_items)
        self._sinks: list[Sink] = []

    def add_sink(self, sink: Sink) -> None:
        self._sinks.append(sink)

    def notify(
        self,
        kind: NotificationKind,
        title: str,
        description: str = "",
        *,
        contact_id: Optional[str] = None,
        level: NotificationLevel = "info",
    ) -> Notification:
        item = Notification(kind=kind, title=title, description=description, contact_id=contact_id, level=level)
        self._items.append(item)
        log = self._obs.warning if level != "info" else self._obs.info
        log(f"notify.{kind}", ctx=LogContext(contact_id=contact_id), title=title)
        for sink in list(self._sinks):
            try:
                sink(item)
            except Exception as e:
                self._obs.warning("notify.sink_failed", ctx=LogContext(contact_id=contact_id), error=str(e))
        return item

    def recent(self, limit: Optional[int] = None, *, kind: Optional[str] = None) -> list[Notification]:
        items = [n for n in self._items if kind is None or n.kind == kind]
        items.reverse()
        return items[:limit] if limit else items

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "…"
