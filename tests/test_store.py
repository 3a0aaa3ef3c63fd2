import asyncio
import unittest

from peerchat import hub as topics
from peerchat.hub import EventHub
from peerchat.store import ClientStore


class ClientStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.hub = EventHub()
        self.store = ClientStore(self.hub)
        self.added = []
        self.hub.subscribe(topics.CHANNEL_ADDED, self.added.append)

    def test_add_channel_is_idempotent(self):
        first, created_first = self.store.add_channel({"id": "c1", "name": "general"})
        again, created_again = self.store.add_channel({"id": "c1", "name": "other"})

        self.assertTrue(created_first)
        self.assertFalse(created_again)
        self.assertIs(first, again)
        self.assertEqual(len(self.added), 1)

    def test_unread_count_follows_mark_read(self):
        self.store.add_channel({"id": "c1", "name": "general"})
        self.store.set_message_count("c1", 4)
        self.assertEqual(self.store.channels["c1"].unread_count, 4)

        self.store.mark_read("c1")
        self.store.set_message_count("c1", 6)
        self.assertEqual(self.store.channels["c1"].unread_count, 2)

    def test_trim_keeps_newest_and_forgets_dropped_hashes(self):
        self.store.add_channel({"id": "c1", "name": "general"})
        for i in range(4):
            self.store.append_message("c1", {"hash": f"m{i}"})

        self.store.trim_messages("c1", 2)
        self.assertEqual([m["hash"] for m in self.store.channels["c1"].messages], ["m2", "m3"])
        self.assertTrue(self.store.append_message("c1", {"hash": "m0"}))
        self.assertFalse(self.store.append_message("c1", {"hash": "m3"}))

    def test_messages_without_hash_are_always_appended(self):
        self.store.add_channel({"id": "c1", "name": "general"})
        self.assertTrue(self.store.append_message("c1", {"json": {"text": "a"}}))
        self.assertTrue(self.store.append_message("c1", {"json": {"text": "a"}}))
        self.assertEqual(len(self.store.channels["c1"].messages), 2)

    def test_unknown_channel_raises(self):
        with self.assertRaises(KeyError):
            self.store.append_message("missing", {"hash": "x"})

    def test_identity_channels_merge(self):
        self.store.add_identity({"publicKey": "k1", "name": "me", "channelIds": ["c1"]})
        self.store.identity_add_channel("k1", "c2")
        self.store.add_identity({"publicKey": "k1", "channelIds": ["c3"]})

        identity = self.store.identities["k1"]
        self.assertEqual(identity.channel_ids, {"c1", "c2", "c3"})
        self.assertTrue(identity.can_post("c2"))
        self.assertFalse(identity.can_post("c9"))

    def test_notification_ids_increase_and_remove_publishes(self):
        removed = []
        self.hub.subscribe(topics.NOTIFICATION_REMOVED, removed.append)

        first = self.store.add_notification("error", "one")
        second = self.store.add_notification("error", "two")
        self.assertEqual((first.id, second.id), (1, 2))

        self.assertTrue(self.store.remove_notification(first.id))
        self.assertFalse(self.store.remove_notification(first.id))
        self.assertEqual([n.content for n in self.store.notifications], ["two"])
        self.assertEqual(removed[0]["notification"], first)


class NotificationTimerTests(unittest.IsolatedAsyncioTestCase):
    async def test_info_notifications_auto_dismiss(self):
        store = ClientStore(notification_ttl_s=0.01)
        store.add_notification("info", "saved")
        store.add_notification("error", "broken")

        await asyncio.sleep(0.05)

        self.assertEqual([n.content for n in store.notifications], ["broken"])

    async def test_cancel_timers_keeps_info_notifications(self):
        store = ClientStore(notification_ttl_s=0.01)
        store.add_notification("info", "saved")
        store.cancel_timers()

        await asyncio.sleep(0.03)

        self.assertEqual([n.content for n in store.notifications], ["saved"])


class EventHubTests(unittest.TestCase):
    def test_any_listener_sees_every_topic_after_topic_listeners(self):
        hub = EventHub()
        seen = []
        hub.subscribe(topics.ANY, lambda e: seen.append(("any", e["topic"])))
        hub.subscribe(topics.CHANNEL_ADDED, lambda e: seen.append(("topic", "channel.added")))

        store = ClientStore(hub)
        store.add_channel({"id": "c1", "name": "general"})
        store.set_invite_status("ready")

        self.assertEqual(
            seen,
            [("topic", "channel.added"), ("any", "channel.added"), ("any", "status.changed")],
        )

    def test_listener_can_cancel_itself_during_delivery(self):
        hub = EventHub()
        calls = []

        def once(event):
            calls.append(event)
            subscription.cancel()

        subscription = hub.subscribe(topics.STATUS_CHANGED, once)
        hub.subscribe(topics.STATUS_CHANGED, calls.append)

        hub.publish(topics.STATUS_CHANGED, {"n": 1})
        hub.publish(topics.STATUS_CHANGED, {"n": 2})

        self.assertEqual([c["n"] for c in calls], [1, 1, 2])
        self.assertEqual(hub.listener_count(topics.STATUS_CHANGED), 1)


if __name__ == "__main__":
    unittest.main()
