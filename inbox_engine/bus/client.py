from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from ..config import ReconnectPolicy
from ..errors import FrameDecodeError, TransportError
from ..models.events import (
    CONVERSATION_UPDATED,
    NEW_MESSAGE,
    PRESENCE_LEFT,
    PRESENCE_TYPING,
    PRESENCE_VIEWING,
)
from ..observability import LogContext, Observability
from .decoder import decode_frame
from .transport import Transport

Handler = Callable[[Any], Union[None, Awaitable[None]]]
StatusHandler = Callable[[bool], Union[None, Awaitable[None]]]

_ids = itertools.count(1)


@dataclass
class BusHandlers:
    on_new_message: Optional[Handler] = None
    on_conversation_updated: Optional[Handler] = None
    on_presence_viewing: Optional[Handler] = None
    on_presence_left: Optional[Handler] = None
    on_presence_typing: Optional[Handler] = None
    on_status: Optional[StatusHandler] = None

    def for_kind(self, kind: str) -> Optional[Handler]:
        return {
            NEW_MESSAGE: self.on_new_message,
            CONVERSATION_UPDATED: self.on_conversation_updated,
            PRESENCE_VIEWING: self.on_presence_viewing,
            PRESENCE_LEFT: self.on_presence_left,
            PRESENCE_TYPING: self.on_presence_typing,
        }.get(kind)


@dataclass
class SubscriptionHandle:
    org_id: str
    id: int = field(default_factory=lambda: next(_ids))
    connected: bool = False
    closed: bool = False
    connects: int = 0
    frames_received: int = 0
    frames_dropped: int = 0
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)


class EventBusClient:
    """Uma conexão de push por organização, com reconexão e backoff exponencial.

    Entrega at-most-once: reconectar apenas retoma o stream dali em diante.
    Os eventos de uma assinatura são tratados em ordem de chegada; o handler
    do evento N termina antes do evento N+1 ser decodificado.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        obs: Observability,
        policy: Optional[ReconnectPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._transport = transport
        self._obs = obs
        self._policy = policy or ReconnectPolicy()
        self._sleep = sleep
        self._subscriptions: dict[int, SubscriptionHandle] = {}

    def subscribe(self, org_id: str, handlers: BusHandlers) -> SubscriptionHandle:
        handle = SubscriptionHandle(org_id=org_id)
        handle.task = asyncio.get_running_loop().create_task(self._run(handle, handlers))
        self._subscriptions[handle.id] = handle
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        handle.closed = True
        self._subscriptions.pop(handle.id, None)
        task = handle.task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        handle.connected = False

    async def close_all(self) -> None:
        for handle in list(self._subscriptions.values()):
            await self.close(handle)

    async def _run(self, handle: SubscriptionHandle, handlers: BusHandlers) -> None:
        log_ctx = LogContext(org_id=handle.org_id, correlation_id=f"sub-{handle.id}")
        delay = self._policy.initial_delay_s
        attempt = 0

        while not handle.closed:
            attempt += 1
            opened = False

            async def on_open() -> None:
                nonlocal opened, delay, attempt
                opened = True
                delay = self._policy.initial_delay_s
                attempt = 0
                if not handle.connected:
                    await self._set_connected(handle, handlers, True, log_ctx)

            try:
                self._obs.info("bus.connect.attempt", ctx=log_ctx, attempt=attempt)
                async for frame in self._transport.frames(handle.org_id, on_open=on_open):
                    if not opened:
                        await on_open()
                    await self._dispatch(handle, handlers, frame, log_ctx)
                    if handle.closed:
                        return
                self._obs.warning("bus.stream.ended", ctx=log_ctx)
            except asyncio.CancelledError:
                raise
            except TransportError as e:
                self._obs.warning(
                    "bus.stream.transport_error",
                    ctx=log_ctx,
                    attempt=attempt,
                    code=e.code,
                    transient=e.transient,
                    message=str(e),
                )
                if not e.transient:
                    delay = self._policy.max_delay_s
            except Exception as e:
                self._obs.warning("bus.stream.unexpected_error", ctx=log_ctx, attempt=attempt, error=str(e))

            if handle.closed:
                return
            if handle.connected:
                await self._set_connected(handle, handlers, False, log_ctx)
            await self._sleep(_with_jitter(delay, self._policy.jitter_s))
            delay = min(delay * 2, self._policy.max_delay_s)

    async def _dispatch(self, handle: SubscriptionHandle, handlers: BusHandlers, frame: Any, log_ctx: LogContext) -> None:
        handle.frames_received += 1
        try:
            event = decode_frame(frame)
        except FrameDecodeError as e:
            handle.frames_dropped += 1
            self._obs.warning("bus.frame.malformed", ctx=log_ctx, message=str(e), details=e.details)
            return

        handler = handlers.for_kind(event.kind)
        if handler is None:
            return
        try:
            await _maybe_await(handler(event))
        except Exception as e:
            self._obs.exception(
                "bus.handler.failed",
                ctx=LogContext(org_id=handle.org_id, contact_id=getattr(event, "contact_id", None)),
                kind=event.kind,
                error=str(e),
            )

    async def _set_connected(self, handle: SubscriptionHandle, handlers: BusHandlers, value: bool, log_ctx: LogContext) -> None:
        handle.connected = value
        if value:
            handle.connects += 1
            self._obs.info("bus.connected", ctx=log_ctx, connects=handle.connects)
        else:
            self._obs.warning("bus.disconnected", ctx=log_ctx)
        if handlers.on_status is None:
            return
        try:
            await _maybe_await(handlers.on_status(value))
        except Exception as e:
            self._obs.warning("bus.status_handler.failed", ctx=log_ctx, error=str(e))


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


def _with_jitter(delay_s: float, jitter_s: float) -> float:
    if jitter_s <= 0:
        return delay_s
    return max(0.0, delay_s + (jitter_s * 0.5))
