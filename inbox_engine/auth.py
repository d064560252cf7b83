from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigError


class AuthStrategy:
    async def get_headers(self) -> dict[str, str]:
        raise NotImplementedError


@dataclass(frozen=True)
class StaticHeadersAuth(AuthStrategy):
    headers: dict[str, str]

    async def get_headers(self) -> dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class BearerTokenAuth(AuthStrategy):
    token: str

    async def get_headers(self) -> dict[str, str]:
        if not self.token:
            raise ConfigError("Token da API do console ausente.")
        return {"Authorization": f"Bearer {self.token}"}


def build_auth(token: str) -> AuthStrategy:
    if token:
        return BearerTokenAuth(token=token)
    return StaticHeadersAuth(headers={})
