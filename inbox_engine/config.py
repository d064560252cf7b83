from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from typing import Protocol

    class YAMLValidationError(Exception):
        pass

    class _YamlDoc(Protocol):
        data: Any

    def load_yaml(_text: str) -> _YamlDoc:
        raise NotImplementedError
else:
    from strictyaml import YAMLValidationError, load as load_yaml

from .errors import ConfigError


@dataclass(frozen=True)
class ReconnectPolicy:
    initial_delay_s: float = 0.8
    max_delay_s: float = 10.0
    jitter_s: float = 0.2


@dataclass(frozen=True)
class EngineConfig:
    api_base_url: str = ""
    api_token: str = ""
    org_id: str = ""
    operator_id: str = ""
    events_path: str = "/events/stream"
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    page_size: int = 50
    typing_idle_s: float = 2.0
    presence_tick_s: float = 1.0
    presence_ttl_s: float = 120.0
    assign_prompt_every: int = 10
    timezone: str = "America/Sao_Paulo"
    notifications_max: int = 200
    preferences_path: Optional[str] = None
    request_timeout_s: float = 30.0


def load_engine_config() -> EngineConfig:
    load_dotenv(Path.cwd() / ".env")
    inline = (os.getenv("INBOX_ENGINE_CONFIG_INLINE") or "").strip()
    path = (os.getenv("INBOX_ENGINE_CONFIG") or "").strip()

    if inline:
        data = _parse_text(inline)
    elif path:
        data = _parse_file(path)
    else:
        data = {}

    return build_engine_config(
        data,
        api_base_url=(os.getenv("INBOX_API_BASE_URL") or "").strip(),
        api_token=(os.getenv("INBOX_API_TOKEN") or "").strip(),
        org_id=(os.getenv("INBOX_ORG_ID") or "").strip(),
        operator_id=(os.getenv("INBOX_OPERATOR_ID") or "").strip(),
        events_path=(os.getenv("INBOX_EVENTS_PATH") or "").strip(),
    )


def build_engine_config(data: dict[str, Any], **env: str) -> EngineConfig:
    defaults = EngineConfig()
    reconnect_raw = data.get("reconnect") or {}
    if not isinstance(reconnect_raw, dict):
        raise ConfigError("Campo reconnect deve ser um mapa.", details={"type": str(type(reconnect_raw))})

    reconnect = ReconnectPolicy(
        initial_delay_s=_as_float(reconnect_raw, "initial_delay_s", defaults.reconnect.initial_delay_s),
        max_delay_s=_as_float(reconnect_raw, "max_delay_s", defaults.reconnect.max_delay_s),
        jitter_s=_as_float(reconnect_raw, "jitter_s", defaults.reconnect.jitter_s),
    )
    preferences_path = str(data.get("preferences_path") or "").strip() or None

    return EngineConfig(
        api_base_url=env.get("api_base_url") or str(data.get("api_base_url") or "").strip(),
        api_token=env.get("api_token") or str(data.get("api_token") or "").strip(),
        org_id=env.get("org_id") or str(data.get("org_id") or "").strip(),
        operator_id=env.get("operator_id") or str(data.get("operator_id") or "").strip(),
        events_path=env.get("events_path") or str(data.get("events_path") or defaults.events_path).strip(),
        reconnect=reconnect,
        page_size=_as_int(data, "page_size", defaults.page_size),
        typing_idle_s=_as_float(data, "typing_idle_s", defaults.typing_idle_s),
        presence_tick_s=_as_float(data, "presence_tick_s", defaults.presence_tick_s),
        presence_ttl_s=_as_float(data, "presence_ttl_s", defaults.presence_ttl_s),
        assign_prompt_every=_as_int(data, "assign_prompt_every", defaults.assign_prompt_every),
        timezone=str(data.get("timezone") or defaults.timezone).strip(),
        notifications_max=_as_int(data, "notifications_max", defaults.notifications_max),
        preferences_path=preferences_path,
        request_timeout_s=_as_float(data, "request_timeout_s", defaults.request_timeout_s),
    )


def _parse_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError("Falha ao ler arquivo de configuração.", details={"path": path, "error": str(e)})
    return _parse_text(text, source=path)


def _parse_text(text: str, source: str = "inline") -> dict[str, Any]:
    raw = (text or "").lstrip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ConfigError("JSON inválido em configuração.", details={"source": source, "error": str(e)})
    else:
        try:
            data = load_yaml(raw).data
        except YAMLValidationError as e:
            raise ConfigError("YAML inválido em configuração.", details={"source": source, "error": str(e)})
    if not isinstance(data, dict):
        raise ConfigError("Configuração deve ser um mapa.", details={"source": source, "type": str(type(data))})
    return data


def _as_float(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError("Valor numérico inválido em configuração.", details={"key": key, "value": value})


def _as_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError("Valor inteiro inválido em configuração.", details={"key": key, "value": value})
