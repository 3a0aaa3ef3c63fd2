"""Client-side runtime for talking to a peer-messaging engine."""

from .actions import ClientRuntime
from .backend import DEFAULT_LOAD_LIMIT, BackendClient
from .commands import CommandRegistry
from .correlation import Correlator, PendingCall
from .envelope import Envelope
from .errors import CallError, CallTimeoutError, ChannelClosedError, CommandError, RemoteError
from .hub import EventHub
from .invite import InviteHandshake
from .store import ClientStore
from .sync import ChannelSyncLoop
from .transport import BroadcastBus, WebSocketChannel

__all__ = [
    "ClientRuntime",
    "DEFAULT_LOAD_LIMIT",
    "BackendClient",
    "CommandRegistry",
    "Correlator",
    "PendingCall",
    "Envelope",
    "CallError",
    "CallTimeoutError",
    "ChannelClosedError",
    "CommandError",
    "RemoteError",
    "EventHub",
    "InviteHandshake",
    "ClientStore",
    "ChannelSyncLoop",
    "BroadcastBus",
    "WebSocketChannel",
]
