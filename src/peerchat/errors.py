from __future__ import annotations


class CallError(Exception):
    """Base class for failures of a correlated engine call."""


class RemoteError(CallError):
    """The engine answered the call with an error."""

    def __init__(self, message: str, *, stack: str | None = None, operation: str | None = None):
        self.remote_message = message
        self.stack = stack
        self.operation = operation
        super().__init__(message)


class CallTimeoutError(CallError):
    """No response arrived within the caller's timeout."""

    def __init__(self, *, operation: str, seq: int, timeout: float):
        self.operation = operation
        self.seq = seq
        self.timeout = timeout
        super().__init__(f"{operation} (seq {seq}) timed out after {timeout:g}s")


class ChannelClosedError(CallError):
    """The physical channel was closed before the call could complete."""


class CommandError(Exception):
    """Malformed chat command; never reaches the transport."""
