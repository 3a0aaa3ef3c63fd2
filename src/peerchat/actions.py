"""Actions the UI calls; every failure ends up as a store notification."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from . import store as st
from .backend import DEFAULT_LOAD_LIMIT, BackendClient
from .commands import CommandRegistry, is_command
from .correlation import Correlator
from .invite import InviteHandshake
from .store import ClientStore
from .sync import ChannelSyncLoop
from .transport import BaseChannel

logger = logging.getLogger(__name__)


class ClientRuntime:
    """Wires the engine facade to the client store.

    Owns one sync loop per known channel, the invite handshake and the
    slash-command registry.
    """

    def __init__(
        self,
        backend: BackendClient,
        store: ClientStore | None = None,
        *,
        load_limit: int = DEFAULT_LOAD_LIMIT,
    ) -> None:
        self.backend = backend
        self.store = store or ClientStore()
        self.load_limit = load_limit
        self.handshake = InviteHandshake(backend, on_status=self.store.set_invite_status)
        self.sync_loops: Dict[str, ChannelSyncLoop] = {}
        self.commands = CommandRegistry()
        self.commands.register("invite", ("invitee_name", "request_id", "request"), self._invite_command)
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def over_channel(
        cls,
        channel: BaseChannel,
        *,
        call_timeout: float | None = None,
        load_limit: int = DEFAULT_LOAD_LIMIT,
        store: ClientStore | None = None,
    ) -> "ClientRuntime":
        correlator = Correlator(channel).start()
        backend = BackendClient(correlator, call_timeout=call_timeout)
        return cls(backend, store, load_limit=load_limit)

    async def close(self) -> None:
        """Stop sync loops and background actions, then release the channel."""

        for loop in list(self.sync_loops.values()):
            await loop.stop()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.store.cancel_timers()
        await self.backend.correlator.close()

    def spawn(self, coro) -> asyncio.Task:
        """Run an action in the background, the way the UI fires them."""

        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def notify_error(self, prefix: str, exc: BaseException) -> None:
        self.store.add_notification(st.NOTIFICATION_ERROR, f"{prefix}{exc}")

    # network

    async def init_network(self, passphrase: str) -> bool:
        self.store.set_network_status(st.NETWORK_LOADING)
        try:
            await self.backend.init(passphrase)
            for channel in await self.backend.get_channels():
                self.add_channel(channel)
            for identity in await self.backend.get_identities():
                self.store.add_identity(identity)
        except Exception as exc:
            self.store.set_network_status(st.NETWORK_ERROR, str(exc))
            return False
        self.store.set_network_status(st.NETWORK_READY)
        return True

    # new channel

    async def new_channel(self, channel_name: str) -> Optional[str]:
        self.store.set_new_channel(in_progress=True)
        try:
            pair = await self.backend.create_identity_pair(channel_name)
        except Exception as exc:
            self.store.set_new_channel(error=str(exc))
            return None
        channel = pair["channel"]
        self.add_channel(channel)
        self.store.add_identity(pair["identity"])
        self.store.set_new_channel(channel_id=str(channel["id"]))
        return str(channel["id"])

    def new_channel_reset(self) -> None:
        self.store.set_new_channel()

    # invites

    async def request_invite(self, identity_key: str) -> Any:
        try:
            return await self.handshake.request_invite(identity_key)
        except Exception as exc:
            self.store.set_new_channel(error=str(exc))
            return None

    async def wait_for_invite(self, identity_key: str) -> Optional[Dict[str, Any]]:
        try:
            channel = await self.handshake.wait_for_invite(identity_key)
        except Exception as exc:
            self.store.set_new_channel(error=str(exc))
            return None
        self.store.identity_add_channel(identity_key, str(channel["id"]))
        self.add_channel(channel)
        return channel

    def invite_request_reset(self) -> None:
        self.handshake.reset()

    async def invite(self, channel_id: str, identity_key: str, invitee_name: str, request: str) -> bool:
        try:
            await self.backend.invite(identity_key, channel_id, invitee_name, request)
        except Exception as exc:
            self.notify_error(f'Failed to invite "{invitee_name}": ', exc)
            return False
        self.store.add_notification(st.NOTIFICATION_INFO, f'Invited "{invitee_name}" to the channel')
        return True

    async def _invite_command(
        self,
        *,
        channel_id: str,
        identity_key: str,
        invitee_name: str,
        request_id: str,
        request: str,
    ) -> bool:
        return await self.invite(channel_id, identity_key, invitee_name, request)

    # channels

    def add_channel(self, data: Dict[str, Any]) -> ChannelSyncLoop:
        """Record ``data`` and make sure exactly one sync loop follows it."""

        channel, _ = self.store.add_channel(data)
        loop = self.sync_loops.get(channel.id)
        if loop is None:
            loop = self._start_sync(channel.id)
        return loop

    def restart_sync(self, channel_id: str) -> ChannelSyncLoop:
        """Re-arm a channel whose loop failed; running loops are left alone."""

        loop = self.sync_loops.get(channel_id)
        if loop is not None and loop.running:
            return loop
        self.store.get_channel(channel_id)
        return self._start_sync(channel_id)

    def _start_sync(self, channel_id: str) -> ChannelSyncLoop:
        loop = ChannelSyncLoop(
            channel_id,
            self.backend,
            on_drain=self._drain,
            on_failure=self._sync_failed,
            on_drain_error=self._drain_failed,
        )
        self.sync_loops[channel_id] = loop
        loop.start()
        return loop

    async def _drain(self, channel_id: str) -> None:
        """Refresh the count, then load only the messages it grew by.

        Without a fresh count the newest page is reloaded and hash
        dedupe keeps it from repeating known messages.
        """

        channel = self.store.channels.get(channel_id)
        previous = channel.message_count if channel is not None else 0
        count = await self.update_message_count(channel_id)
        if count is None:
            await self.load_messages(channel_id)
            return
        if count > previous:
            await self.load_messages(channel_id, 0, min(count - previous, self.load_limit))

    def _sync_failed(self, channel_id: str, exc: BaseException) -> None:
        self.notify_error("Failed to wait for an update: ", exc)

    def _drain_failed(self, channel_id: str, exc: BaseException) -> None:
        self.notify_error("Failed to sync channel: ", exc)

    async def update_message_count(self, channel_id: str) -> Optional[int]:
        try:
            count = int(await self.backend.get_message_count(channel_id))
        except Exception as exc:
            self.notify_error("Failed to update message count: ", exc)
            return None
        self.store.set_message_count(channel_id, count)
        return count

    async def load_messages(self, channel_id: str, offset: int = 0, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch a newest-first page and append the unseen messages oldest first."""

        try:
            page = await self.backend.get_reverse_messages_at_offset(
                channel_id, offset, self.load_limit if limit is None else limit
            )
        except Exception as exc:
            self.notify_error("Failed to load messages: ", exc)
            return []
        appended = []
        for message in reversed(page or []):
            if self.store.append_message(channel_id, message):
                appended.append(message)
        return appended

    def mark_read(self, channel_id: str) -> None:
        self.store.mark_read(channel_id)

    def trim_messages(self, channel_id: str, count: int) -> None:
        self.store.trim_messages(channel_id, count)

    async def rename_channel(self, channel_id: str, channel_name: str) -> bool:
        try:
            await self.backend.rename_channel(channel_id, channel_name)
        except Exception as exc:
            self.notify_error("Failed to rename channel: ", exc)
            return False
        self.store.rename_channel(channel_id, channel_name)
        return True

    # posting

    async def post_message(self, channel_id: str, identity_key: str, text: str) -> Optional[Dict[str, Any]]:
        """Post ``text`` or run it as a slash command.

        Returns the posted message, or ``None`` for commands and failures.
        """

        try:
            if is_command(text):
                await self.commands.dispatch(text, channel_id=channel_id, identity_key=identity_key)
                return None
            message = await self.backend.post_message(channel_id, identity_key, {"text": text})
        except Exception as exc:
            self.notify_error("Failed to post message: ", exc)
            return None
        if channel_id in self.store.channels:
            self.store.append_message(channel_id, message, is_posted=True)
        return message

    # notifications

    def add_notification(self, kind: str, content: str) -> st.Notification:
        return self.store.add_notification(kind, content)

    def remove_notification(self, notification_id: int) -> bool:
        return self.store.remove_notification(notification_id)
