from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

SENDER_RENDERER = "renderer"
SENDER_HOST = "host"
SENDERS = frozenset({SENDER_RENDERER, SENDER_HOST})

SEQ_MODULUS = 1 << 32


@dataclass(frozen=True)
class Envelope:
    """One unit exchanged over the engine channel.

    Requests carry ``type`` and ``payload``. Responses carry either
    ``payload`` (success) or ``error`` plus an optional ``stack``.
    """

    sender: str
    seq: int
    type: str | None = None
    payload: Any = None
    error: str | None = None
    stack: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"sender": self.sender, "seq": self.seq}
        if self.type is not None:
            data["type"] = self.type
        if self.error is not None:
            data["error"] = self.error
            if self.stack is not None:
                data["stack"] = self.stack
        else:
            data["payload"] = self.payload
        return data


def request(sender: str, type_: str, seq: int, payload: Any = None) -> Envelope:
    return Envelope(sender=sender, seq=seq, type=type_, payload=payload)


def response(sender: str, seq: int, payload: Any = None) -> Envelope:
    return Envelope(sender=sender, seq=seq, payload=payload)


def error_response(sender: str, seq: int, message: str, stack: str | None = None) -> Envelope:
    return Envelope(sender=sender, seq=seq, error=message, stack=stack)


def from_dict(data: Mapping[str, Any]) -> Envelope:
    """Build an :class:`Envelope` from its wire form.

    Raises ``ValueError`` when the frame has no usable ``seq`` or an
    unknown ``sender``.
    """

    if not isinstance(data, Mapping):
        raise ValueError("envelope must be a mapping")
    sender = data.get("sender")
    if sender not in SENDERS:
        raise ValueError(f"unknown sender: {sender!r}")
    seq = data.get("seq")
    if not isinstance(seq, int) or isinstance(seq, bool) or not 0 <= seq < SEQ_MODULUS:
        raise ValueError(f"invalid seq: {seq!r}")
    error = data.get("error")
    stack = data.get("stack")
    type_ = data.get("type")
    return Envelope(
        sender=sender,
        seq=seq,
        type=type_ if isinstance(type_, str) else None,
        payload=data.get("payload"),
        error=str(error) if error else None,
        stack=stack if isinstance(stack, str) else None,
    )
