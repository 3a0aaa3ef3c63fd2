"""Request/response multiplexing over a single engine channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from . import envelope as env
from .errors import CallTimeoutError, ChannelClosedError, RemoteError
from .transport import BaseChannel

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    seq: int
    operation: str
    created_at: float
    timeout: float | None
    future: asyncio.Future = field(repr=False)


class Correlator:
    """Turns one unordered duplex channel into concurrent awaitable calls.

    Every request gets the next sequence id (wrapping at 2**32, skipping ids
    still outstanding). A response resolves the pending call with the same
    id; responses without one are dropped. Envelopes tagged with our own
    ``sender`` are echoes and are ignored.
    """

    def __init__(self, channel: BaseChannel, *, sender: str = env.SENDER_RENDERER) -> None:
        self.channel = channel
        self.sender = sender
        self._seq = 0
        self._pending: Dict[int, PendingCall] = {}
        self._unsubscribe: Callable[[], None] | None = None
        self._remove_close_hook: Callable[[], None] | None = None
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, seq: int) -> bool:
        return seq in self._pending

    def start(self) -> "Correlator":
        if self._unsubscribe is None:
            self._unsubscribe = self.channel.subscribe(self.handle_message)
            self._remove_close_hook = self.channel.on_close(self._on_channel_closed)
        return self

    async def close(self) -> None:
        self._detach()
        self._reject_all("correlator closed")

    async def __aenter__(self) -> "Correlator":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _detach(self) -> None:
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._remove_close_hook is not None:
            self._remove_close_hook()
            self._remove_close_hook = None

    def _on_channel_closed(self) -> None:
        self._detach()
        self._reject_all("engine channel closed")

    def _reject_all(self, reason: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            if not call.future.done():
                call.future.set_exception(ChannelClosedError(f"{call.operation}: {reason}"))

    def _next_seq(self) -> int:
        if len(self._pending) >= env.SEQ_MODULUS:
            raise RuntimeError("sequence space exhausted")
        while True:
            seq = self._seq
            self._seq = (self._seq + 1) % env.SEQ_MODULUS
            if seq not in self._pending:
                return seq

    async def call(self, operation: str, payload: Any = None, timeout: float | None = None) -> Any:
        """Send ``operation`` and wait for its response payload.

        Raises :class:`RemoteError` when the engine reports a failure,
        :class:`CallTimeoutError` when ``timeout`` seconds pass without a
        response and :class:`ChannelClosedError` when the channel goes away.
        A cancelled caller leaves no pending entry behind.
        """

        if self._closed:
            raise ChannelClosedError(f"{operation}: correlator closed")

        loop = asyncio.get_running_loop()
        seq = self._next_seq()
        call = PendingCall(
            seq=seq,
            operation=operation,
            created_at=loop.time(),
            timeout=timeout,
            future=loop.create_future(),
        )
        self._pending[seq] = call

        try:
            await self.channel.send(env.request(self.sender, operation, seq, payload).to_dict())
            if timeout is None:
                result: env.Envelope = await call.future
            else:
                try:
                    result = await asyncio.wait_for(call.future, timeout)
                except asyncio.TimeoutError:
                    raise CallTimeoutError(operation=operation, seq=seq, timeout=timeout) from None
        finally:
            self._discard(call)

        if result.is_error:
            raise RemoteError(result.error, stack=result.stack, operation=operation)
        return result.payload

    def _discard(self, call: PendingCall) -> None:
        if self._pending.get(call.seq) is call:
            del self._pending[call.seq]
        if not call.future.done():
            call.future.cancel()

    def handle_message(self, message: Any) -> None:
        """Resolve the pending call matching an incoming wire message."""

        if isinstance(message, dict) and message.get("sender") == self.sender:
            return
        try:
            envelope = env.from_dict(message)
        except ValueError as exc:
            logger.debug("dropping malformed envelope: %s", exc)
            return

        call = self._pending.pop(envelope.seq, None)
        if call is None:
            logger.debug("dropping unmatched envelope seq=%s", envelope.seq)
            return
        if call.future.done():
            return
        call.future.set_result(envelope)
