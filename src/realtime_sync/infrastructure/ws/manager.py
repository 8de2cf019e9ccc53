"""Push channel lifecycle: one live connection per stream key, reconnecting with backoff."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from realtime_sync.application.ports.channel import (
    NORMAL_CLOSURE,
    ChannelClosedError,
    ChannelConnector,
    ChannelSocket,
    ChannelUnavailableError,
)
from realtime_sync.application.ports.scheduler import Scheduler, TimerHandle
from realtime_sync.domain.value_objects.enums import ConnectionState
from realtime_sync.domain.value_objects.ids import StreamKey

logger = logging.getLogger(__name__)

OnMessageCallback = Callable[[str], Coroutine[Any, Any, None]]
OnStateChangeCallback = Callable[[ConnectionState], None]

# Try Again Later / Bad Gateway: the server side is down, not just this socket.
UNAVAILABLE_CLOSE_CODES = frozenset({1013, 1014})

_S = ConnectionState
_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    _S.IDLE: frozenset({_S.CONNECTING, _S.CLOSED}),
    _S.CONNECTING: frozenset({_S.OPEN, _S.RECONNECTING, _S.CLOSING, _S.CLOSED}),
    _S.OPEN: frozenset({_S.RECONNECTING, _S.CLOSING, _S.CLOSED}),
    _S.RECONNECTING: frozenset({_S.CONNECTING, _S.CLOSING, _S.CLOSED}),
    _S.CLOSING: frozenset({_S.CLOSED}),
    _S.CLOSED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    pass


@dataclass(eq=False)
class Connection:
    key: StreamKey
    url: str
    on_message: OnMessageCallback
    on_state_change: OnStateChangeCallback | None = None
    state: ConnectionState = ConnectionState.IDLE
    retry_count: int = 0
    last_error: str | None = None
    # Bumped on every connect attempt and on unsubscribe; work tagged with an
    # older generation is stale and must not touch this connection.
    generation: int = 0
    socket: ChannelSocket | None = field(default=None, repr=False)
    task: asyncio.Task[None] | None = field(default=None, repr=False)
    timer: TimerHandle | None = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN and self.socket is not None


class ChannelConnectionManager:
    """Tracks push channels by stream key and keeps them alive.

    Channel failures never raise out of this class: they are logged and
    feed the reconnect loop. Observers learn about them through each
    connection's ``on_state_change`` callback.
    """

    def __init__(
        self,
        connector: ChannelConnector,
        scheduler: Scheduler,
        *,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponent_cap: int = 5,
        unavailable_delay: float | None = None,
        handshake_timeout: float = 10.0,
    ) -> None:
        self._connector = connector
        self._scheduler = scheduler
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._exponent_cap = exponent_cap
        self._unavailable_delay = max_delay if unavailable_delay is None else unavailable_delay
        self._handshake_timeout = handshake_timeout
        self._connections: dict[StreamKey, Connection] = {}

    def get(self, key: StreamKey) -> Connection | None:
        return self._connections.get(key)

    def keys(self) -> list[StreamKey]:
        return list(self._connections)

    def backoff_delay(self, retry_count: int) -> float:
        return min(self._base_delay * 2 ** min(retry_count, self._exponent_cap), self._max_delay)

    def subscribe(
        self,
        key: StreamKey,
        url: str,
        on_message: OnMessageCallback,
        on_state_change: OnStateChangeCallback | None = None,
    ) -> Connection:
        """Open a channel for ``key``, or return the one already live for it."""
        conn = self._connections.get(key)
        if conn is not None and conn.state is not ConnectionState.CLOSED:
            logger.debug("Channel %s already subscribed (state=%s)", key, conn.state)
            return conn

        conn = Connection(key=key, url=url, on_message=on_message, on_state_change=on_state_change)
        self._connections[key] = conn
        self._connect(conn)
        return conn

    async def send(self, key: StreamKey, payload: str) -> bool:
        """Write ``payload`` if the channel is open. False means: use REST instead."""
        conn = self._connections.get(key)
        if conn is None or not conn.is_open:
            return False
        socket = conn.socket
        try:
            await socket.send(payload)
        except Exception as exc:
            logger.warning("Send on channel %s failed: %s", key, exc)
            return False
        return True

    async def unsubscribe(self, key: StreamKey) -> None:
        conn = self._connections.pop(key, None)
        if conn is None or conn.state is ConnectionState.CLOSED:
            return

        # Everything up to the first await runs in one loop turn, so a
        # pending reconnect can no longer fire once we get past here.
        if conn.timer is not None:
            conn.timer.cancel()
            conn.timer = None
        conn.generation += 1
        socket, conn.socket = conn.socket, None
        task, conn.task = conn.task, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if socket is not None:
            self._transition(conn, ConnectionState.CLOSING)
            await self._close_quietly(socket, NORMAL_CLOSURE, "client unsubscribed")
        self._transition(conn, ConnectionState.CLOSED)
        logger.info("Channel %s closed by client", key)

    async def close_all(self) -> None:
        for key in list(self._connections):
            await self.unsubscribe(key)

    def _connect(self, conn: Connection) -> None:
        conn.timer = None
        conn.generation += 1
        self._transition(conn, ConnectionState.CONNECTING)
        conn.task = asyncio.create_task(
            self._run(conn, conn.generation), name=f"channel-{conn.key}",
        )

    def _is_current(self, conn: Connection, generation: int) -> bool:
        return conn.generation == generation and conn.state not in (
            ConnectionState.CLOSING,
            ConnectionState.CLOSED,
        )

    async def _run(self, conn: Connection, generation: int) -> None:
        try:
            socket = await asyncio.wait_for(
                self._connector.connect(conn.url), self._handshake_timeout,
            )
        except ChannelUnavailableError as exc:
            if self._is_current(conn, generation):
                self._schedule_reconnect(conn, f"unavailable: {exc}", unavailable=True)
            return
        except Exception as exc:
            if self._is_current(conn, generation):
                self._schedule_reconnect(conn, f"handshake failed: {exc!r}")
            return

        if not self._is_current(conn, generation):
            logger.debug("Discarding late socket for channel %s", conn.key)
            await self._close_quietly(socket, NORMAL_CLOSURE, "superseded")
            return

        conn.socket = socket
        conn.retry_count = 0
        conn.last_error = None
        self._transition(conn, ConnectionState.OPEN)
        logger.info("Channel %s open", conn.key)

        while True:
            try:
                raw = await socket.recv()
            except ChannelClosedError as exc:
                if not self._is_current(conn, generation):
                    return
                conn.socket = None
                if exc.code == NORMAL_CLOSURE:
                    logger.info("Channel %s closed by server", conn.key)
                    self._transition(conn, ConnectionState.CLOSED)
                    if self._connections.get(conn.key) is conn:
                        del self._connections[conn.key]
                    return
                self._schedule_reconnect(
                    conn, str(exc), unavailable=exc.code in UNAVAILABLE_CLOSE_CODES,
                )
                return
            except Exception as exc:
                if not self._is_current(conn, generation):
                    return
                conn.socket = None
                self._schedule_reconnect(conn, f"transport error: {exc!r}")
                await self._close_quietly(socket, NORMAL_CLOSURE, "transport error")
                return

            if not self._is_current(conn, generation):
                return
            try:
                await conn.on_message(raw)
            except Exception:
                logger.exception("Error handling message on channel %s", conn.key)

    def _schedule_reconnect(self, conn: Connection, error: str, *, unavailable: bool = False) -> None:
        conn.socket = None
        conn.last_error = error
        delay = self.backoff_delay(conn.retry_count)
        if unavailable:
            delay = max(delay, self._unavailable_delay)
        conn.retry_count += 1
        self._transition(conn, ConnectionState.RECONNECTING)
        generation = conn.generation
        conn.timer = self._scheduler.call_later(delay, lambda: self._on_reconnect_timer(conn, generation))
        logger.warning(
            "Channel %s dropped (%s); reconnect #%d in %.1fs",
            conn.key, error, conn.retry_count, delay,
        )

    def _on_reconnect_timer(self, conn: Connection, generation: int) -> None:
        if conn.generation != generation or conn.state is not ConnectionState.RECONNECTING:
            return
        self._connect(conn)

    def _transition(self, conn: Connection, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[conn.state]:
            raise InvalidTransitionError(f"channel {conn.key}: {conn.state} -> {new_state}")
        conn.state = new_state
        if conn.on_state_change is not None:
            try:
                conn.on_state_change(new_state)
            except Exception:
                logger.exception("State listener failed for channel %s", conn.key)

    @staticmethod
    async def _close_quietly(socket: ChannelSocket, code: int, reason: str) -> None:
        try:
            await socket.close(code, reason)
        except Exception as exc:
            logger.debug("Ignoring error while closing socket: %s", exc)
