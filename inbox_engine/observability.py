from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class LogContext:
    org_id: Optional[str] = None
    contact_id: Optional[str] = None
    operator_id: Optional[str] = None
    agent_id: Optional[str] = None
    correlation_id: Optional[str] = None


class Observability:
    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def debug(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.debug(self._format(event, ctx=ctx, fields=fields))

    def info(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.info(self._format(event, ctx=ctx, fields=fields))

    def warning(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.warning(self._format(event, ctx=ctx, fields=fields))

    def error(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.error(self._format(event, ctx=ctx, fields=fields))

    def exception(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.exception(self._format(event, ctx=ctx, fields=fields))

    def _format(self, event: str, *, ctx: Optional[LogContext], fields: Mapping[str, Any]) -> str:
        parts: list[str] = [event]
        if ctx:
            if ctx.org_id:
                parts.append(f"org={ctx.org_id}")
            if ctx.contact_id:
                parts.append(f"contact={ctx.contact_id}")
            if ctx.operator_id:
                parts.append(f"operator={ctx.operator_id}")
            if ctx.agent_id:
                parts.append(f"agent={ctx.agent_id}")
            if ctx.correlation_id:
                parts.append(f"corr={ctx.correlation_id}")
        for k, v in fields.items():
            if v is None:
                continue
            parts.append(f"{k}={v}")
        return " ".join(parts)
