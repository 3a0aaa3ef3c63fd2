"""Typed engine operations, one correlated call each."""

from __future__ import annotations

from typing import Any, Dict, List

from .correlation import Correlator

DEFAULT_LOAD_LIMIT = 1024


class BackendClient:
    """Facade over the engine's ``network:*`` operations.

    Nothing here retries or caches; callers own that policy. ``call_timeout``
    is the local timeout for short operations. The two blocking waits never
    get one.
    """

    def __init__(self, correlator: Correlator, *, call_timeout: float | None = None) -> None:
        self.correlator = correlator
        self.call_timeout = call_timeout

    async def _request(self, operation: str, payload: Dict[str, Any] | None = None) -> Any:
        return await self.correlator.call(f"network:{operation}", payload, self.call_timeout)

    async def _wait(self, operation: str, payload: Dict[str, Any]) -> Any:
        return await self.correlator.call(f"network:{operation}", payload, None)

    async def init(self, passphrase: str) -> None:
        await self._request("init", {"passphrase": passphrase})

    async def is_ready(self) -> bool:
        return await self._request("isReady")

    async def get_channels(self) -> List[Dict[str, Any]]:
        return await self._request("getChannels")

    async def get_identities(self) -> List[Dict[str, Any]]:
        return await self._request("getIdentities")

    async def create_identity_pair(self, name: str) -> Dict[str, Any]:
        return await self._request("createIdentityPair", {"name": name})

    async def channel_from_public_key(self, public_key: str, name: str) -> Dict[str, Any]:
        return await self._request("channelFromPublicKey", {"publicKey": public_key, "name": name})

    async def remove_identity_pair(self, channel_id: str, identity_key: str) -> Any:
        return await self._request(
            "removeIdentityPair", {"channelId": channel_id, "identityKey": identity_key}
        )

    async def update_channel_metadata(self, channel_id: str, metadata: Dict[str, Any]) -> Any:
        return await self._request(
            "updateChannelMetadata", {"channelId": channel_id, "metadata": metadata}
        )

    async def get_message_count(self, channel_id: str) -> int:
        return await self._request("getMessageCount", {"channelId": channel_id})

    async def get_reverse_messages_at_offset(
        self,
        channel_id: str,
        offset: int = 0,
        limit: int = DEFAULT_LOAD_LIMIT,
    ) -> List[Dict[str, Any]]:
        return await self._request(
            "getReverseMessagesAtOffset",
            {"channelId": channel_id, "offset": offset, "limit": limit},
        )

    async def wait_for_incoming_message(self, channel_id: str, timeout: float | None = None) -> Any:
        # ``timeout`` is enforced by the engine, not locally.
        return await self._wait("waitForIncomingMessage", {"channelId": channel_id, "timeout": timeout})

    async def post_message(self, channel_id: str, identity_key: str, json: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "postMessage",
            {"channelId": channel_id, "identityKey": identity_key, "json": json},
        )

    async def request_invite(self, identity_key: str) -> Any:
        return await self._request("requestInvite", {"identityKey": identity_key})

    async def wait_for_invite(self, identity_key: str) -> Dict[str, Any]:
        return await self._wait("waitForInvite", {"identityKey": identity_key})

    async def invite(self, identity_key: str, channel_id: str, invitee_name: str, request: str) -> Any:
        return await self._request(
            "invite",
            {
                "identityKey": identity_key,
                "channelId": channel_id,
                "inviteeName": invitee_name,
                "request": request,
            },
        )

    async def rename_channel(self, channel_id: str, channel_name: str) -> Any:
        return await self._request("renameChannel", {"channelId": channel_id, "channelName": channel_name})
