from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

CHANNEL_ADDED = "channel.added"
CHANNEL_UPDATED = "channel.updated"
MESSAGE_APPENDED = "message.appended"
NOTIFICATION_ADDED = "notification.added"
NOTIFICATION_REMOVED = "notification.removed"
STATUS_CHANGED = "status.changed"

# Listeners on ANY receive every event with its topic under "topic".
ANY = "*"

Listener = Callable[[Dict[str, Any]], None]


@dataclass(eq=False)
class Subscription:
    hub: "EventHub"
    topic: str
    listener: Listener

    def cancel(self) -> None:
        self.hub.unsubscribe(self)


class EventHub:
    """Fans store changes out to UI listeners.

    Topic listeners run first, then ``ANY`` listeners. The listener list is
    snapshotted per publish, so a listener may cancel itself mid-delivery.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Subscription]] = {}

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        subscription = Subscription(self, topic, listener)
        self._listeners.setdefault(topic, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        listeners = self._listeners.get(subscription.topic, [])
        if subscription in listeners:
            listeners.remove(subscription)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, []))

    def publish(self, topic: str, event: Dict[str, Any]) -> None:
        for subscription in list(self._listeners.get(topic, [])):
            subscription.listener(event)
        if topic == ANY:
            return
        for subscription in list(self._listeners.get(ANY, [])):
            subscription.listener({**event, "topic": topic})
