"""Envio de mensagens pelos canais conectados."""
from __future__ import annotations

from typing import Any, Optional

from ..http import HttpClient
from ..models.messages import MediaDescriptor
from ..observability import LogContext, Observability
from ..errors import CollaboratorError
from .messages import MessagesApi


class ChannelsApi:
    def __init__(self, client: HttpClient):
        self._client = client

    async def send_text(self, channel_id: str, *, number: str, text: str) -> Optional[str]:
        data = await self._client.request(
            "POST", f"/channels/{channel_id}/send", json={"number": number, "text": text}
        )
        return extract_external_id(data)

    async def send_media(self, channel_id: str, *, number: str, media: MediaDescriptor) -> Optional[str]:
        body = {
            "number": number,
            "mediaMessage": {"mediatype": media.type, "media": media.url, "caption": media.caption},
        }
        data = await self._client.request("POST", f"/channels/{channel_id}/send", json=body)
        return extract_external_id(data)


class AutomatedMessenger:
    """Respostas automáticas das regras: envia pelo canal e persiste sem usuário."""

    def __init__(self, channels: ChannelsApi, messages: MessagesApi, *, obs: Observability):
        self._channels = channels
        self._messages = messages
        self._obs = obs

    async def send_automated(self, contact_id: str, *, channel_id: str, number: str, text: str) -> Optional[str]:
        external_id = await self._channels.send_text(channel_id, number=number, text=text)
        try:
            await self._messages.create_message(contact_id, content=text, channel_id=channel_id)
        except CollaboratorError as e:
            self._obs.warning(
                "api.messages.persist_failed",
                ctx=LogContext(contact_id=contact_id),
                code=e.code,
                transient=e.transient,
            )
        return external_id


def extract_external_id(data: dict[str, Any]) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for k in ("id", "messageId", "externalId"):
        v = data.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    key = data.get("key")
    if isinstance(key, dict) and isinstance(key.get("id"), str):
        return key["id"]
    return None
