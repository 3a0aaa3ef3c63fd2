"""Physical channels between the UI process and the engine."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List

import aiohttp
from aiohttp import WSMsgType

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Any], None]
CloseCallback = Callable[[], None]


class BaseChannel:
    """Subscriber bookkeeping shared by every channel implementation.

    Incoming messages are handed to subscribers one at a time; a subscriber
    runs to completion before the next message is delivered.
    """

    def __init__(self) -> None:
        self._subscribers: List[MessageCallback] = []
        self._close_callbacks: List[CloseCallback] = []
        self.closed = False

    def subscribe(self, callback: MessageCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                return

        return unsubscribe

    def on_close(self, callback: CloseCallback) -> Callable[[], None]:
        self._close_callbacks.append(callback)

        def remove() -> None:
            try:
                self._close_callbacks.remove(callback)
            except ValueError:
                return

        return remove

    def _deliver(self, message: Any) -> None:
        for callback in list(self._subscribers):
            callback(message)

    def _mark_closed(self) -> None:
        if self.closed:
            return
        self.closed = True
        for callback in list(self._close_callbacks):
            callback()

    async def send(self, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        self._mark_closed()


class BroadcastBus(BaseChannel):
    """In-process bus where every subscriber sees every message.

    This includes the sender's own traffic, so endpoints must filter their
    echoes by the envelope ``sender`` tag. Delivery is deferred to the event
    loop and messages are deep-copied, like a cross-process post.
    """

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("bus is closed")
        asyncio.get_running_loop().call_soon(self._deliver_if_open, copy.deepcopy(message))

    def _deliver_if_open(self, message: Any) -> None:
        if not self.closed:
            self._deliver(message)


class WebSocketChannel(BaseChannel):
    """JSON text frames over an aiohttp client WebSocket."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat_s: float | None = 30.0,
        max_msg_size: int = 1_048_576,
    ) -> None:
        super().__init__()
        self.url = url
        self._session = session
        self._owns_session = session is None
        self._heartbeat_s = heartbeat_s
        self._max_msg_size = max_msg_size
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None

    async def connect(self) -> "WebSocketChannel":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self.url,
                heartbeat=self._heartbeat_s,
                max_msg_size=self._max_msg_size,
            )
        except (aiohttp.ClientError, OSError):
            if self._owns_session:
                await self._session.close()
                self._session = None
            raise
        self._reader_task = asyncio.create_task(self._reader())
        logger.info("connected to engine at %s", self.url)
        return self

    async def _reader(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        payload = msg.json()
                    except ValueError:
                        logger.debug("dropping malformed frame from %s", self.url)
                        continue
                    self._deliver(payload)
                elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                    break
        except asyncio.CancelledError:
            return
        finally:
            self._mark_closed()

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws is None or self._ws.closed:
            raise ConnectionError(f"websocket to {self.url} is not open")
        await self._ws.send_json(message)

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        self._mark_closed()

    async def __aenter__(self) -> "WebSocketChannel":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
