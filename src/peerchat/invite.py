from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .backend import BackendClient

IDLE = "idle"
GENERATING = "generating"
READY = "ready"
WAITING = "waiting"
GOT_CHANNEL = "got_channel"

StatusCallback = Callable[[str], None]


@dataclass
class InviteRequest:
    identity_key: Optional[str] = None
    request: Any = None
    channel: Optional[Dict[str, Any]] = None


class InviteHandshake:
    """Two independent phases: produce an invite request, then wait for a peer.

    The phases share no rollback; either may be rerun on its own. Failures
    propagate to the caller and leave the recorded request untouched.
    ``on_status`` sees every status change.
    """

    def __init__(self, backend: BackendClient, on_status: StatusCallback | None = None) -> None:
        self.backend = backend
        self._on_status = on_status
        self.status = IDLE
        self.current = InviteRequest()

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status is not None:
            self._on_status(status)

    async def request_invite(self, identity_key: str) -> Any:
        previous = self.status
        self._set_status(GENERATING)
        try:
            request = await self.backend.request_invite(identity_key)
        except BaseException:
            self._set_status(previous)
            raise
        self.current = InviteRequest(identity_key=identity_key, request=request)
        self._set_status(READY)
        return request

    async def wait_for_invite(self, identity_key: str) -> Dict[str, Any]:
        previous = self.status
        self._set_status(WAITING)
        try:
            channel = await self.backend.wait_for_invite(identity_key)
        except BaseException:
            self._set_status(previous)
            raise
        if self.current.identity_key != identity_key:
            self.current = InviteRequest(identity_key=identity_key)
        self.current.channel = channel
        self._set_status(GOT_CHANNEL)
        return channel

    def reset(self) -> None:
        self.current = InviteRequest()
        self._set_status(IDLE)
