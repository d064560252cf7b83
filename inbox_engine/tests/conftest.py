from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from inbox_engine.errors import CollaboratorError
from inbox_engine.models.conversations import ContactSnapshot
from inbox_engine.models.messages import Message, MessagePage
from inbox_engine.observability import Observability

BASE_TIME = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def obs() -> Observability:
    return Observability(logging.getLogger("inbox_engine.tests"))


@pytest.fixture
def make_message():
    def _make(
        message_id: str,
        *,
        direction: str = "inbound",
        text: str = "",
        minutes: float = 0,
        status: str = "sent",
        external_id: Optional[str] = None,
        author_id: Optional[str] = None,
        channel_id: Optional[str] = "ch-1",
    ) -> Message:
        return Message(
            id=message_id,
            direction=direction,
            text=text or f"texto {message_id}",
            status=status,
            created_at=BASE_TIME + timedelta(minutes=minutes),
            external_id=external_id,
            author_id=author_id,
            channel_id=channel_id,
        )

    return _make


@pytest.fixture
def make_contact():
    def _make(contact_id: str, **fields) -> ContactSnapshot:
        data = {"id": contact_id, "name": f"Contato {contact_id}", "phone": "+5511999990000", "channel_id": "ch-1"}
        data.update(fields)
        return ContactSnapshot(**data)

    return _make


class FakeMessagesApi:
    """Páginas enfileiradas por contato; ``gate`` segura a resposta até ser liberado."""

    def __init__(self):
        self.pages: dict[str, list[MessagePage]] = {}
        self.calls: list[tuple[str, int, Optional[datetime]]] = []
        self.created: list[dict] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_create = False

    def queue(self, contact_id: str, messages: list[Message], *, has_more: bool = False) -> None:
        self.pages.setdefault(contact_id, []).append(MessagePage(messages=messages, has_more=has_more))

    async def list_messages(self, contact_id: str, *, limit: int, before: Optional[datetime] = None) -> MessagePage:
        self.calls.append((contact_id, limit, before))
        if self.gate is not None:
            await self.gate.wait()
        queued = self.pages.get(contact_id) or []
        if not queued:
            return MessagePage(messages=[], has_more=False)
        return queued.pop(0)

    async def create_message(self, contact_id: str, **fields) -> dict:
        if self.fail_create:
            raise CollaboratorError("Falha ao persistir", collaborator="fake", status_code=500, transient=True)
        self.created.append({"contact_id": contact_id, **fields})
        return {"id": f"db-{len(self.created)}"}


@pytest.fixture
def messages_api() -> FakeMessagesApi:
    return FakeMessagesApi()
