"""In-memory client state mutated by the runtime actions."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from . import hub as topics
from .hub import EventHub

logger = logging.getLogger(__name__)

NETWORK_IDLE = "idle"
NETWORK_LOADING = "loading"
NETWORK_READY = "ready"
NETWORK_ERROR = "error"

NOTIFICATION_INFO = "info"
NOTIFICATION_ERROR = "error"

AUTO_DISMISS_DELAY_S = 15.0


@dataclass
class Channel:
    id: str
    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    message_count: int = 0
    last_read_count: int = 0
    _seen_hashes: Set[str] = field(default_factory=set, repr=False)

    @classmethod
    def from_engine(cls, data: Dict[str, Any]) -> "Channel":
        metadata = data.get("metadata")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            message_count=int(data.get("messageCount") or 0),
        )

    @property
    def unread_count(self) -> int:
        return max(0, self.message_count - self.last_read_count)

    def append(self, message: Dict[str, Any]) -> bool:
        digest = message.get("hash") if isinstance(message, dict) else None
        if isinstance(digest, str):
            if digest in self._seen_hashes:
                return False
            self._seen_hashes.add(digest)
        self.messages.append(message)
        return True

    def trim(self, count: int) -> None:
        """Keep only the newest ``count`` messages."""

        if count < 0:
            raise ValueError("count must be non-negative")
        dropped = self.messages[: max(0, len(self.messages) - count)]
        self.messages = self.messages[len(dropped):]
        for message in dropped:
            digest = message.get("hash") if isinstance(message, dict) else None
            if isinstance(digest, str):
                self._seen_hashes.discard(digest)


@dataclass
class Identity:
    public_key: str
    name: str = ""
    display_path: List[str] = field(default_factory=list)
    channel_ids: Set[str] = field(default_factory=set)

    @classmethod
    def from_engine(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            public_key=str(data["publicKey"]),
            name=str(data.get("name") or ""),
            display_path=[str(p) for p in data.get("displayPath") or []],
            channel_ids={str(c) for c in data.get("channelIds") or []},
        )

    def can_post(self, channel_id: str) -> bool:
        return channel_id in self.channel_ids


@dataclass(frozen=True)
class Notification:
    id: int
    kind: str
    content: str


@dataclass
class NewChannelState:
    in_progress: bool = False
    channel_id: Optional[str] = None
    error: Optional[str] = None


class ClientStore:
    """Channels, identities and notifications, with change events on a hub."""

    def __init__(self, hub: EventHub | None = None, *, notification_ttl_s: float = AUTO_DISMISS_DELAY_S) -> None:
        self.hub = hub or EventHub()
        self.notification_ttl_s = notification_ttl_s
        self.network_status = NETWORK_IDLE
        self.network_error: Optional[str] = None
        self.new_channel = NewChannelState()
        self.invite_status = "idle"
        self.channels: Dict[str, Channel] = {}
        self.identities: Dict[str, Identity] = {}
        self.notifications: List[Notification] = []
        self._notification_ids = itertools.count(1)
        self._dismiss_handles: Dict[int, asyncio.TimerHandle] = {}

    # network

    def set_network_status(self, status: str, error: Optional[str] = None) -> None:
        self.network_status = status
        self.network_error = error
        self.hub.publish(topics.STATUS_CHANGED, {"scope": "network", "status": status, "error": error})

    def set_new_channel(self, *, in_progress: bool = False, channel_id: Optional[str] = None,
                        error: Optional[str] = None) -> None:
        self.new_channel = NewChannelState(in_progress=in_progress, channel_id=channel_id, error=error)
        self.hub.publish(
            topics.STATUS_CHANGED,
            {"scope": "new_channel", "in_progress": in_progress, "channel_id": channel_id, "error": error},
        )

    def set_invite_status(self, status: str) -> None:
        self.invite_status = status
        self.hub.publish(topics.STATUS_CHANGED, {"scope": "invite", "status": status})

    # channels

    def add_channel(self, data: Dict[str, Any]) -> tuple[Channel, bool]:
        channel = Channel.from_engine(data)
        existing = self.channels.get(channel.id)
        if existing is not None:
            return existing, False
        self.channels[channel.id] = channel
        logger.info("channel added: %s (%s)", channel.id, channel.name)
        self.hub.publish(topics.CHANNEL_ADDED, {"channel": channel})
        return channel, True

    def get_channel(self, channel_id: str) -> Channel:
        try:
            return self.channels[channel_id]
        except KeyError:
            raise KeyError(f"unknown channel: {channel_id}") from None

    def append_message(self, channel_id: str, message: Dict[str, Any], *, is_posted: bool = False) -> bool:
        channel = self.get_channel(channel_id)
        if not channel.append(message):
            return False
        self.hub.publish(
            topics.MESSAGE_APPENDED,
            {"channel_id": channel_id, "message": message, "is_posted": is_posted},
        )
        return True

    def trim_messages(self, channel_id: str, count: int) -> None:
        self.get_channel(channel_id).trim(count)
        self._channel_updated(channel_id)

    def set_message_count(self, channel_id: str, message_count: int) -> None:
        self.get_channel(channel_id).message_count = int(message_count)
        self._channel_updated(channel_id)

    def mark_read(self, channel_id: str) -> None:
        channel = self.get_channel(channel_id)
        channel.last_read_count = channel.message_count
        self._channel_updated(channel_id)

    def rename_channel(self, channel_id: str, name: str) -> None:
        self.get_channel(channel_id).name = name
        self._channel_updated(channel_id)

    def _channel_updated(self, channel_id: str) -> None:
        self.hub.publish(topics.CHANNEL_UPDATED, {"channel": self.channels[channel_id]})

    # identities

    def add_identity(self, data: Dict[str, Any]) -> Identity:
        identity = Identity.from_engine(data)
        existing = self.identities.get(identity.public_key)
        if existing is not None:
            existing.channel_ids |= identity.channel_ids
            return existing
        self.identities[identity.public_key] = identity
        return identity

    def identity_add_channel(self, identity_key: str, channel_id: str) -> None:
        identity = self.identities.get(identity_key)
        if identity is None:
            identity = Identity(public_key=identity_key)
            self.identities[identity_key] = identity
        identity.channel_ids.add(channel_id)

    # notifications

    def add_notification(self, kind: str, content: str) -> Notification:
        notification = Notification(id=next(self._notification_ids), kind=kind, content=content)
        self.notifications.append(notification)
        if kind == NOTIFICATION_ERROR:
            logger.warning("%s", content)
        self.hub.publish(topics.NOTIFICATION_ADDED, {"notification": notification})
        if kind == NOTIFICATION_INFO:
            self._schedule_dismiss(notification.id)
        return notification

    def remove_notification(self, notification_id: int) -> bool:
        handle = self._dismiss_handles.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        for index, notification in enumerate(self.notifications):
            if notification.id == notification_id:
                del self.notifications[index]
                self.hub.publish(topics.NOTIFICATION_REMOVED, {"notification": notification})
                return True
        return False

    def _schedule_dismiss(self, notification_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._dismiss_handles[notification_id] = loop.call_later(
            self.notification_ttl_s, self.remove_notification, notification_id
        )

    def cancel_timers(self) -> None:
        for handle in self._dismiss_handles.values():
            handle.cancel()
        self._dismiss_handles.clear()
