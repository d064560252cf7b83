from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .auth import AuthStrategy, StaticHeadersAuth
from .errors import CollaboratorError


@dataclass(frozen=True)
class HttpClientConfig:
    base_url: str
    timeout_s: float = 30.0
    headers: Optional[dict[str, str]] = None


class HttpClient:
    def __init__(self, *, config: HttpClientConfig, auth: Optional[AuthStrategy] = None, collaborator: str):
        self._config = config
        self._auth = auth or StaticHeadersAuth(headers={})
        self._collaborator = collaborator

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        base = (self._config.base_url or "").rstrip("/")
        if not base:
            raise CollaboratorError("Base URL não configurada.", collaborator=self._collaborator, transient=False)
        url = f"{base}{path}"
        base_headers = dict(self._config.headers or {})
        auth_headers = await self._auth.get_headers()
        headers = {**base_headers, **auth_headers}
        query = {k: v for k, v in (params or {}).items() if v is not None} or None

        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_s) as client:
                resp = await client.request(method, url, headers=headers, json=json, params=query)
        except httpx.HTTPError as e:
            raise CollaboratorError(
                "Falha de comunicação com a API.",
                collaborator=self._collaborator,
                transient=True,
                details={"error": str(e)},
            )

        if resp.status_code >= 400:
            raise CollaboratorError(
                "Erro retornado pela API.",
                collaborator=self._collaborator,
                status_code=resp.status_code,
                transient=resp.status_code >= 500,
                details={
                    "body": _safe_text(resp),
                    "method": str(method or "").upper(),
                    "url": url,
                    "path": path,
                },
            )

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {"raw_text": _safe_text(resp)}
        if isinstance(data, dict):
            return data
        return {"items": data}


def _safe_text(resp: httpx.Response, limit: int = 4000) -> str:
    try:
        return (resp.text or "")[:limit]
    except Exception:
        return ""
