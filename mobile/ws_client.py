from __future__ import annotations
import asyncio
import itertools
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from shared.envelope import InboundEvent, MalformedMessage, encode_message
from shared.log import get_logger

from .errors import ChannelError
from .state import ChannelState

logger = get_logger(__name__)


OpenHandler = Callable[["ChannelHandle"], Awaitable[None]]
MessageHandler = Callable[["ChannelHandle", InboundEvent], Awaitable[None]]
ErrorHandler = Callable[["ChannelHandle", Exception], Awaitable[None]]
Connector = Callable[..., Awaitable[Any]]

_handle_ids = itertools.count(1)


class ChannelHandle:
    """One connection attempt. A handle is never reused after it closes."""

    def __init__(self, target: str) -> None:
        self.id = next(_handle_ids)
        self.target = target
        self.state = ChannelState.CONNECTING
        self.websocket: Optional[Any] = None
        self.task: Optional[asyncio.Task] = None
        self.released = False  # closed by the owner; callbacks are dropped

    def __repr__(self) -> str:
        return f"<ChannelHandle #{self.id} {self.state.value} {self.target}>"


class ChannelTransport:
    """
    Match channel transport for a single owner.

    Wraps one WebSocket at a time. connect() returns a handle straight away and
    opens the socket on a background task, which then delivers on_open,
    on_message (decoded InboundEvent), on_close and on_error in arrival order.
    Frames that cannot be decoded are reported to on_error as MalformedMessage
    and the receive loop carries on.
    """

    def __init__(
        self,
        on_open: OpenHandler,
        on_message: MessageHandler,
        on_close: OpenHandler,
        on_error: ErrorHandler,
        *,
        connector: Optional[Connector] = None,
        open_timeout: Optional[float] = None,
        ping_interval: Optional[float] = 15,
        ping_timeout: Optional[float] = 45,
        name: str = "channel",
    ) -> None:
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.name = name
        self._connector = connector or websockets.connect
        self._connect_kwargs: Dict[str, Any] = {
            "open_timeout": open_timeout,
            "ping_interval": ping_interval,
            "ping_timeout": ping_timeout,
        }
        self._current: Optional[ChannelHandle] = None

    @property
    def current(self) -> Optional[ChannelHandle]:
        return self._current

    async def connect(self, target: str) -> ChannelHandle:
        """Start connecting to target, closing any handle still connecting or open."""
        previous = self._current
        if previous is not None and previous.state.is_live:
            logger.debug("%s: replacing %r", self.name, previous)
            await self.close(previous)

        handle = ChannelHandle(target)
        self._current = handle
        handle.task = asyncio.create_task(self._run(handle), name=f"{self.name}-{handle.id}")
        logger.info("%s: connecting to %s", self.name, target)
        return handle

    async def send(self, handle: Optional[ChannelHandle], message: Dict[str, Any]) -> None:
        if (
            handle is None
            or handle.released
            or handle is not self._current
            or handle.websocket is None
            or handle.state not in (ChannelState.OPEN, ChannelState.AUTHENTICATED)
        ):
            raise ChannelError(f"Cannot send '{message.get('tag')}': channel is not open")
        try:
            await handle.websocket.send(encode_message(message))
        except websockets.exceptions.ConnectionClosed as e:
            raise ChannelError(f"Channel closed while sending '{message.get('tag')}': {e}") from e
        logger.debug("%s: sent %s", self.name, message.get("tag"))

    def mark_authenticated(self, handle: ChannelHandle) -> None:
        if handle.state is ChannelState.OPEN:
            handle.state = ChannelState.AUTHENTICATED

    async def close(self, handle: Optional[ChannelHandle]) -> None:
        """Close handle. Safe on None, on never-opened and on already-closed handles."""
        if handle is None or handle.released:
            return
        handle.released = True
        handle.state = ChannelState.CLOSED if handle.websocket is not None else ChannelState.DISCONNECTED
        if handle is self._current:
            self._current = None

        task = handle.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        if handle.websocket is not None:
            try:
                await handle.websocket.close(code=1000)
            except Exception as e:
                logger.error(f"{self.name}: error closing channel: {e}")
        logger.debug("%s: closed %r", self.name, handle)

    async def aclose(self) -> None:
        await self.close(self._current)

    # ========================================
    #           RECEIVE LOOP
    # ========================================

    def _wants_callbacks(self, handle: ChannelHandle) -> bool:
        return not handle.released and handle is self._current

    async def _dispatch(self, handle: ChannelHandle, callback: Callable[..., Awaitable[None]], *args: Any) -> None:
        if not self._wants_callbacks(handle):
            return
        try:
            await callback(handle, *args)
        except Exception as e:
            logger.exception(f"{self.name}: channel callback failed: {e}")

    async def _run(self, handle: ChannelHandle) -> None:
        try:
            websocket = await self._connector(handle.target, **self._connect_kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            handle.state = ChannelState.DISCONNECTED
            logger.warning(f"{self.name}: connect to {handle.target} failed: {e}")
            await self._dispatch(handle, self.on_error, ChannelError(f"Connect to {handle.target} failed: {e}"))
            return

        handle.websocket = websocket
        if handle.released:
            # closed while the handshake was in flight
            with suppress(Exception):
                await websocket.close(code=1000)
            return

        handle.state = ChannelState.OPEN
        await self._dispatch(handle, self.on_open)

        try:
            async for raw in websocket:
                try:
                    event = InboundEvent.from_json(raw)
                except MalformedMessage as e:
                    logger.warning(f"{self.name}: discarding malformed frame: {e.detail}")
                    await self._dispatch(handle, self.on_error, e)
                    continue
                await self._dispatch(handle, self.on_message, event)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"{self.name}: connection closed: {e}")

        if handle.released:
            return
        handle.state = ChannelState.CLOSED
        await self._dispatch(handle, self.on_close)
