"""Per-channel background loop that follows engine activity."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .backend import BackendClient

logger = logging.getLogger(__name__)

IDLE = "idle"
WAITING = "waiting"
DRAINING = "draining"
FAILED = "failed"
STOPPED = "stopped"

DrainCallback = Callable[[str], Awaitable[None]]
FailureCallback = Callable[[str, BaseException], None]


class ChannelSyncLoop:
    """Waits for incoming activity on one channel and drains it.

    ``on_drain`` refreshes the count and loads new messages. Anything it
    raises goes to ``on_drain_error`` and the loop waits again. A failed wait
    is terminal: the loop records the error, calls ``on_failure`` once and
    never issues another wait.
    """

    def __init__(
        self,
        channel_id: str,
        backend: BackendClient,
        *,
        on_drain: DrainCallback,
        on_failure: FailureCallback,
        on_drain_error: FailureCallback | None = None,
    ) -> None:
        self.channel_id = channel_id
        self.backend = backend
        self._on_drain = on_drain
        self._on_failure = on_failure
        self._on_drain_error = on_drain_error
        self.state = IDLE
        self.error: BaseException | None = None
        self.cycles = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"sync loop for {self.channel_id} already started")
        self._task = asyncio.create_task(self._run(), name=f"sync:{self.channel_id}")
        logger.info("sync loop started for channel %s", self.channel_id)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        if self.state != FAILED:
            self.state = STOPPED

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        try:
            while True:
                self.state = WAITING
                try:
                    await self.backend.wait_for_incoming_message(self.channel_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.state = FAILED
                    self.error = exc
                    logger.warning("sync loop for channel %s failed: %s", self.channel_id, exc)
                    self._on_failure(self.channel_id, exc)
                    return
                self.state = DRAINING
                try:
                    await self._on_drain(self.channel_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.error = exc
                    logger.warning("drain for channel %s failed: %s", self.channel_id, exc)
                    if self._on_drain_error is not None:
                        self._on_drain_error(self.channel_id, exc)
                self.cycles += 1
        except asyncio.CancelledError:
            self.state = STOPPED
            raise
