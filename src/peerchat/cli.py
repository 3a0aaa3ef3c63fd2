"""Console client for a peer-messaging engine reachable over WebSocket."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, TextIO

import aiohttp
from aioconsole import ainput

from . import config as cfg
from . import hub as topics
from .actions import ClientRuntime
from .store import ClientStore
from .transport import WebSocketChannel

PROMPT = "> "

HELP_TEXT = """\
:channels                     list known channels
:identities                   list identities and their channels
:use <channel-id> <identity>  select where plain text is posted
:new <name>                   create a channel together with an identity
:request-invite [identity]    generate an invite request
:wait-invite [identity]       wait in the background until a peer accepts
:resync [channel-id]          restart a channel whose sync stopped
:rename <name>                rename the selected channel
:read                         mark the selected channel read
:quit                         exit
/invite <invitee> <request-id> <request>
anything else is posted to the selected channel"""


class ConsoleSession:
    """Line-oriented front end for :class:`ClientRuntime`."""

    def __init__(self, runtime: ClientRuntime, output: TextIO) -> None:
        self.runtime = runtime
        self.output = output
        self.channel_id: str | None = None
        self.identity_key: str | None = None
        hub = runtime.store.hub
        hub.subscribe(topics.MESSAGE_APPENDED, self._on_message)
        hub.subscribe(topics.NOTIFICATION_ADDED, self._on_notification)
        hub.subscribe(topics.CHANNEL_ADDED, self._on_channel)

    def write(self, line: str) -> None:
        self.output.write(line + "\n")
        self.output.flush()

    def _on_message(self, event: Dict[str, Any]) -> None:
        message = event["message"]
        body = message.get("json") if isinstance(message, dict) else None
        text = body.get("text") if isinstance(body, dict) else None
        author = ""
        if isinstance(message, dict):
            author = message.get("author") or ""
        self.write(f"[{event['channel_id']}] {author}: {text if text is not None else json.dumps(message)}")

    def _on_notification(self, event: Dict[str, Any]) -> None:
        notification = event["notification"]
        self.write(f"({notification.kind}) {notification.content}")

    def _on_channel(self, event: Dict[str, Any]) -> None:
        channel = event["channel"]
        self.write(f"+ channel {channel.id} #{channel.name}")

    def _pick_identity(self, explicit: str | None) -> str | None:
        if explicit:
            return explicit
        if self.identity_key:
            return self.identity_key
        identities = list(self.runtime.store.identities)
        return identities[0] if len(identities) == 1 else None

    def _invite_settled(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        channel = task.result()
        if channel is None:
            self.write(f"invite failed: {self.runtime.store.new_channel.error}")
        else:
            self.write(f"joined channel {channel['id']}")

    async def handle_line(self, line: str) -> bool:
        """Process one input line; returns ``False`` when the user quits."""

        line = line.strip()
        if not line:
            return True
        if line.startswith(":"):
            return await self._handle_local(line[1:].split())
        if self.channel_id is None or self.identity_key is None:
            self.write("select a channel first with :use <channel-id> <identity>")
            return True
        await self.runtime.post_message(self.channel_id, self.identity_key, line)
        return True

    async def _handle_local(self, parts: list[str]) -> bool:
        store = self.runtime.store
        command, args = (parts[0], parts[1:]) if parts else ("help", [])
        if command in {"quit", "q", "exit"}:
            return False
        if command == "channels":
            for channel in store.channels.values():
                self.write(f"{channel.id} #{channel.name} messages={channel.message_count} unread={channel.unread_count}")
        elif command == "identities":
            for identity in store.identities.values():
                self.write(f"{identity.public_key} {identity.name} channels={sorted(identity.channel_ids)}")
        elif command == "use" and len(args) == 2:
            if args[0] not in store.channels:
                self.write(f"unknown channel: {args[0]}")
            else:
                self.channel_id, self.identity_key = args
        elif command == "new" and args:
            channel_id = await self.runtime.new_channel(" ".join(args))
            if channel_id is None:
                self.write(f"failed to create channel: {store.new_channel.error}")
        elif command == "request-invite":
            identity_key = self._pick_identity(args[0] if args else None)
            if identity_key is None:
                self.write("which identity? :request-invite <identity>")
                return True
            request = await self.runtime.request_invite(identity_key)
            if request is None:
                self.write(f"failed to request invite: {store.new_channel.error}")
            else:
                self.write(f"invite request: {json.dumps(request)}")
        elif command == "wait-invite":
            identity_key = self._pick_identity(args[0] if args else None)
            if identity_key is None:
                self.write("which identity? :wait-invite <identity>")
                return True
            self.write("waiting for a peer to accept in the background...")
            task = self.runtime.spawn(self.runtime.wait_for_invite(identity_key))
            task.add_done_callback(self._invite_settled)
        elif command == "resync":
            channel_id = args[0] if args else self.channel_id
            if channel_id is None:
                self.write("which channel? :resync <channel-id>")
                return True
            try:
                self.runtime.restart_sync(channel_id)
            except KeyError:
                self.write(f"unknown channel: {channel_id}")
            else:
                self.write(f"syncing {channel_id}")
        elif command == "rename" and args and self.channel_id:
            await self.runtime.rename_channel(self.channel_id, " ".join(args))
        elif command == "read" and self.channel_id:
            self.runtime.mark_read(self.channel_id)
        else:
            self.write(HELP_TEXT)
        return True


async def run_console(config: cfg.ClientConfig, output: TextIO) -> int:
    store = ClientStore(notification_ttl_s=config.notification_ttl_s)
    channel = WebSocketChannel(config.url, heartbeat_s=config.heartbeat_s)
    try:
        await channel.connect()
    except (aiohttp.ClientError, OSError) as exc:
        output.write(f"could not reach engine at {config.url}: {exc}\n")
        return 1

    runtime = ClientRuntime.over_channel(
        channel,
        call_timeout=config.call_timeout,
        load_limit=config.load_limit,
        store=store,
    )
    session = ConsoleSession(runtime, output)
    try:
        passphrase = config.passphrase
        if passphrase is None:
            passphrase = await ainput("passphrase: ")
        if not await runtime.init_network(passphrase):
            output.write(f"engine init failed: {store.network_error}\n")
            return 1
        session.write(f"ready: {len(store.channels)} channel(s), {len(store.identities)} identit(y/ies)")
        while not channel.closed:
            try:
                line = await ainput(PROMPT)
            except EOFError:
                break
            if not await session.handle_line(line):
                break
    finally:
        await runtime.close()
        await channel.close()
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Peer messaging console client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    connect_parser = subparsers.add_parser("connect", help="Open an interactive session with the engine")
    cfg.add_arguments(connect_parser)

    args = parser.parse_args(argv)
    config = cfg.load(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "connect":
        try:
            return asyncio.run(run_console(config, output or sys.stdout))
        except KeyboardInterrupt:
            return 130
    return 2


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
