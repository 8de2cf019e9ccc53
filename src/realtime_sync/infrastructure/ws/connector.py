"""ChannelConnector backed by the ``websockets`` client."""
from __future__ import annotations

import logging

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from realtime_sync.application.ports.channel import (
    NORMAL_CLOSURE,
    ChannelClosedError,
    ChannelUnavailableError,
)

logger = logging.getLogger(__name__)

# No close frame received: the TCP connection just went away.
ABNORMAL_CLOSURE = 1006


class WebsocketsSocket:
    def __init__(self, ws) -> None:
        self._ws = ws

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise _closed_error(exc) from exc

    async def recv(self) -> str:
        try:
            frame = await self._ws.recv()
        except ConnectionClosed as exc:
            raise _closed_error(exc) from exc
        if isinstance(frame, bytes):
            return frame.decode("utf-8")
        return frame

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self._ws.close(code, reason)


class WebsocketsConnector:
    def __init__(self, *, open_timeout: float | None = 10.0, ping_interval: float | None = 20.0) -> None:
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval

    async def connect(self, url: str) -> WebsocketsSocket:
        try:
            ws = await websockets.connect(
                url, open_timeout=self._open_timeout, ping_interval=self._ping_interval,
            )
        except (ConnectionRefusedError, InvalidHandshake) as exc:
            raise ChannelUnavailableError(str(exc)) from exc
        logger.debug("WS handshake complete: %s", _redact(url))
        return WebsocketsSocket(ws)


def _closed_error(exc: ConnectionClosed) -> ChannelClosedError:
    rcvd = exc.rcvd
    if rcvd is None:
        return ChannelClosedError(ABNORMAL_CLOSURE, "no close frame")
    return ChannelClosedError(rcvd.code, rcvd.reason)


def _redact(url: str) -> str:
    return url.split("?", 1)[0]
