from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import httpx

from ..auth import AuthStrategy, StaticHeadersAuth
from ..errors import TransportError


class Transport(Protocol):
    def frames(self, org_id: str, *, on_open: Optional[Callable[[], Awaitable[None]]] = None) -> AsyncIterator[str]:
        """Abre o stream da organização e produz frames brutos até a conexão cair."""
        raise NotImplementedError


class SseTransport:
    def __init__(
        self,
        *,
        base_url: str,
        path: str = "/events/stream",
        auth: Optional[AuthStrategy] = None,
        connect_timeout_s: float = 10.0,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._path = path
        self._auth = auth or StaticHeadersAuth(headers={})
        self._connect_timeout_s = connect_timeout_s

    async def frames(self, org_id: str, *, on_open: Optional[Callable[[], Awaitable[None]]] = None) -> AsyncIterator[str]:
        if not self._base_url:
            raise TransportError("Base URL do stream não configurada.", transient=False)
        url = f"{self._base_url}{self._path}"
        headers = {"Accept": "text/event-stream", **(await self._auth.get_headers())}
        # Sem read timeout: o stream fica aberto indefinidamente
        timeout = httpx.Timeout(self._connect_timeout_s, read=None)

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                async with client.stream("GET", url, headers=headers, params={"orgId": org_id}) as resp:
                    if resp.status_code >= 400:
                        raise TransportError(
                            "Stream de eventos recusado.",
                            transient=resp.status_code >= 500 or resp.status_code == 429,
                            details={"status_code": resp.status_code},
                        )
                    if on_open is not None:
                        await on_open()
                    async for frame in iter_sse_data(resp.aiter_lines()):
                        yield frame
        except httpx.HTTPError as e:
            raise TransportError("Falha no stream de eventos.", details={"error": str(e)})


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if line == "":
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)
