import unittest

from peerchat.actions import ClientRuntime
from peerchat.commands import CommandRegistry
from peerchat.errors import CommandError
from peerchat.transport import BroadcastBus
from tests.engine_util import EngineFailure, FakeEngine


class CommandRegistryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.calls = []

        async def handler(**params):
            self.calls.append(params)
            return "handled"

        self.registry = CommandRegistry()
        self.registry.register("invite", ("invitee_name", "request_id", "request"), handler)

    async def test_invite_routes_named_arguments(self):
        result = await self.registry.dispatch("/invite alice req123 blob", channel_id="c1", identity_key="k1")

        self.assertEqual(result, "handled")
        self.assertEqual(
            self.calls,
            [
                {
                    "channel_id": "c1",
                    "identity_key": "k1",
                    "invitee_name": "alice",
                    "request_id": "req123",
                    "request": "blob",
                }
            ],
        )

    async def test_extra_whitespace_is_ignored(self):
        await self.registry.dispatch("  /invite   alice\treq123  blob  ")
        self.assertEqual(self.calls[0]["request"], "blob")

    async def test_too_few_arguments(self):
        with self.assertRaises(CommandError) as ctx:
            await self.registry.dispatch("/invite alice")
        self.assertEqual(
            str(ctx.exception),
            "Invalid command arguments. Expected: /invite invitee_name request_id request",
        )
        self.assertEqual(self.calls, [])

    async def test_unknown_command(self):
        with self.assertRaises(CommandError) as ctx:
            await self.registry.dispatch("/foo x")
        self.assertEqual(str(ctx.exception), "Unknown command: /foo")


class PostMessageTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.bus = BroadcastBus()
        self.engine = FakeEngine(self.bus)
        self.engine.hold("network:waitForIncomingMessage")
        self.engine.on(
            "network:postMessage",
            lambda payload: {"hash": "h1", "json": payload["json"], "author": payload["identityKey"]},
        )
        self.engine.on("network:invite", lambda payload: None)
        self.runtime = ClientRuntime.over_channel(self.bus)
        self.runtime.add_channel({"id": "c1", "name": "general"})

    async def asyncTearDown(self):
        await self.runtime.close()
        await self.bus.close()

    async def test_plain_text_is_posted_verbatim(self):
        message = await self.runtime.post_message("c1", "k1", "hello /not a command")

        request = self.engine.requests_for("network:postMessage")[0]
        self.assertEqual(request.payload, {"channelId": "c1", "identityKey": "k1", "json": {"text": "hello /not a command"}})
        self.assertEqual(self.runtime.store.channels["c1"].messages, [message])

    async def test_invite_command_calls_engine_and_notifies(self):
        result = await self.runtime.post_message("c1", "k1", "/invite alice req123 blob")

        self.assertIsNone(result)
        self.assertEqual(self.engine.requests_for("network:postMessage"), [])
        request = self.engine.requests_for("network:invite")[0]
        self.assertEqual(
            request.payload,
            {"identityKey": "k1", "channelId": "c1", "inviteeName": "alice", "request": "blob"},
        )
        notification = self.runtime.store.notifications[-1]
        self.assertEqual((notification.kind, notification.content), ("info", 'Invited "alice" to the channel'))

    async def test_malformed_command_never_reaches_transport(self):
        await self.runtime.post_message("c1", "k1", "/invite alice")
        await self.runtime.post_message("c1", "k1", "/foo x")

        self.assertEqual(self.engine.requests_for("network:invite"), [])
        self.assertEqual(self.engine.requests_for("network:postMessage"), [])
        contents = [n.content for n in self.runtime.store.notifications]
        self.assertEqual(
            contents,
            [
                "Failed to post message: Invalid command arguments. "
                "Expected: /invite invitee_name request_id request",
                "Failed to post message: Unknown command: /foo",
            ],
        )

    async def test_failed_invite_is_reported(self):
        def refuse(payload):
            raise EngineFailure("bad request blob")

        self.engine.on("network:invite", refuse)
        await self.runtime.post_message("c1", "k1", "/invite bob r1 junk")

        notification = self.runtime.store.notifications[-1]
        self.assertEqual(notification.kind, "error")
        self.assertEqual(notification.content, 'Failed to invite "bob": bad request blob')

    async def test_failed_post_is_reported(self):
        def refuse(payload):
            raise EngineFailure("not a member")

        self.engine.on("network:postMessage", refuse)
        self.assertIsNone(await self.runtime.post_message("c1", "k1", "hi"))
        self.assertEqual(self.runtime.store.notifications[-1].content, "Failed to post message: not a member")
        self.assertEqual(self.runtime.store.channels["c1"].messages, [])


if __name__ == "__main__":
    unittest.main()
