"""Shared test fixtures and in-memory fakes for the injected ports."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

import pytest

from realtime_sync.application.ports.channel import ChannelClosedError
from realtime_sync.config import Settings
from realtime_sync.domain.entities.conversation import Conversation
from realtime_sync.domain.entities.message import Message
from realtime_sync.domain.entities.notification import Notification
from realtime_sync.domain.value_objects.enums import NotificationType

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def drain(times: int = 10) -> None:
    """Let pending tasks run a few loop turns."""
    for _ in range(times):
        await asyncio.sleep(0)


def make_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {
        "API_BASE_URL": "http://api.test",
        "WS_BASE_URL": "ws://api.test",
        "AUTH_TOKEN": "tok",
        "USER_ID": 42,
        "RETRY_BASE_DELAY_SECONDS": 0.5,
    }
    base.update(overrides)
    return Settings(**base)


def make_notification(
    notification_id: int | str = 1,
    *,
    is_read: bool = False,
    title: str = "New postulation",
    created_at: datetime | None = T0,
) -> Notification:
    return Notification(
        id=notification_id,
        type=NotificationType.POSTULATION_CREATED,
        title=title,
        message="A provider applied to your petition",
        is_read=is_read,
        created_at=created_at,
    )


def make_message(
    message_id: int | str = 1,
    *,
    conversation_id: int | str = 10,
    content: str = "hello",
    created_at: datetime = T0,
    is_own: bool = False,
    is_read: bool = False,
    provisional: bool = False,
    sender_id: int | None = 7,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        created_at=created_at,
        is_own=is_own,
        is_read=is_read,
        provisional=provisional,
    )


def make_conversation(
    conversation_id: int | str = 10, *, unread_count: int = 0, last_message: str | None = None,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        participants=(42, 7),
        last_message=last_message,
        unread_count=unread_count,
        updated_at=T0,
    )


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self._now = start
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds


@dataclass
class FakeTimer:
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Timers only fire when the test says so; sleeps return after one loop turn."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []
        self.sleeps: list[float] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        await asyncio.sleep(0)

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self, timer: FakeTimer) -> None:
        """Run a timer's callback, ignoring cancellation (like a late loop callback)."""
        timer.fired = True
        timer.callback()

    def fire_pending(self) -> int:
        due = self.pending
        for timer in due:
            self.fire(timer)
        return len(due)


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed_with: int | None = None
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, payload: Mapping[str, Any] | str) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self._inbox.put_nowait(raw)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self._inbox.put_nowait(ChannelClosedError(code, reason))

    def fail(self, exc: Exception) -> None:
        self._inbox.put_nowait(exc)

    @property
    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    async def send(self, data: str) -> None:
        if self.closed_with is not None:
            raise ChannelClosedError(1006, "socket closed")
        self.sent.append(data)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code


class FakeConnector:
    def __init__(self) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None

    async def connect(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


@dataclass
class FakeHttpTransport:
    """Scripted REST backend. A route's last response repeats forever."""

    routes: dict[tuple[str, str], list[Any]] = field(default_factory=dict)
    calls: list[tuple[str, str, dict[str, Any] | None, Any]] = field(default_factory=list)
    closed: bool = False

    def add(self, method: str, endpoint: str, *responses: Any) -> None:
        self.routes[(method, endpoint)] = list(responses)

    def count(self, method: str, endpoint: str) -> int:
        return sum(1 for m, e, _, _ in self.calls if m == method and e == endpoint)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        self.calls.append((method, endpoint, dict(params) if params else None, json))
        queue = self.routes.get((method, endpoint))
        if not queue:
            return None
        item = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def transport() -> FakeHttpTransport:
    return FakeHttpTransport()
