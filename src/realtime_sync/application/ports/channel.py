from __future__ import annotations

from typing import Protocol

NORMAL_CLOSURE = 1000


class ChannelClosedError(Exception):
    """The remote side closed the channel (or the transport dropped)."""

    def __init__(self, code: int, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"channel closed ({code}) {reason}".rstrip())


class ChannelUnavailableError(Exception):
    """The push endpoint cannot be reached at all (refused, rejected handshake)."""


class ChannelSocket(Protocol):
    async def send(self, data: str) -> None: ...

    async def recv(self) -> str:
        """Next text frame. Raises ChannelClosedError once the channel is gone."""
        ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


class ChannelConnector(Protocol):
    async def connect(self, url: str) -> ChannelSocket: ...
