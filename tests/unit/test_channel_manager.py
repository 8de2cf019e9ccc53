from __future__ import annotations

import asyncio

import pytest

from realtime_sync.application.ports.channel import ChannelUnavailableError
from realtime_sync.domain.value_objects.enums import ConnectionState
from realtime_sync.infrastructure.ws.manager import ChannelConnectionManager
from tests.conftest import FakeConnector, FakeScheduler, drain

KEY = "chat:10"
URL = "ws://api.test/ws/chat/10/?token=tok"


@pytest.fixture
def manager(connector, scheduler):
    return ChannelConnectionManager(connector, scheduler, base_delay=1, max_delay=30, exponent_cap=5)


@pytest.fixture
def inbox():
    return []


@pytest.fixture
def on_message(inbox):
    async def handler(raw):
        inbox.append(raw)

    return handler


@pytest.mark.asyncio
async def test_double_subscribe_opens_one_channel(manager, connector: FakeConnector, on_message):
    first = manager.subscribe(KEY, URL, on_message)
    second = manager.subscribe(KEY, URL, on_message)
    await drain()

    assert first is second
    assert connector.urls == [URL]
    assert first.state is ConnectionState.OPEN
    assert manager.keys() == [KEY]


@pytest.mark.asyncio
async def test_frames_reach_handler(manager, connector: FakeConnector, on_message, inbox):
    manager.subscribe(KEY, URL, on_message)
    await drain()

    connector.last.push({"type": "creation", "entity": {"id": 1}})
    connector.last.push("plain text")
    await drain()

    assert len(inbox) == 2
    assert inbox[1] == "plain text"


@pytest.mark.asyncio
async def test_state_changes_are_reported(manager, connector: FakeConnector, on_message):
    states = []
    manager.subscribe(KEY, URL, on_message, states.append)
    await drain()
    connector.last.drop(1006)
    await drain()

    assert states == [ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.RECONNECTING]


@pytest.mark.asyncio
async def test_backoff_doubles_up_to_cap(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    connector.failures = [OSError("refused") for _ in range(7)]
    conn = manager.subscribe(KEY, URL, on_message)

    delays = []
    for _ in range(7):
        await drain()
        (timer,) = scheduler.pending
        delays.append(timer.delay)
        scheduler.fire(timer)
    await drain()

    assert delays == [1, 2, 4, 8, 16, 30, 30]
    assert conn.state is ConnectionState.OPEN
    assert conn.retry_count == 0
    assert len(connector.urls) == 8


@pytest.mark.asyncio
async def test_drop_reconnects_and_resets_retry_count(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()

    connector.last.drop(1006, "abnormal")
    await drain()
    assert conn.state is ConnectionState.RECONNECTING
    assert conn.retry_count == 1
    assert "1006" in conn.last_error

    scheduler.fire_pending()
    await drain()

    assert conn.state is ConnectionState.OPEN
    assert conn.retry_count == 0
    assert len(connector.sockets) == 2


@pytest.mark.parametrize("code", [1013, 1014])
@pytest.mark.asyncio
async def test_unavailable_close_code_waits_longest(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message, code,
):
    manager.subscribe(KEY, URL, on_message)
    await drain()

    connector.last.drop(code)
    await drain()

    assert [t.delay for t in scheduler.pending] == [30]


@pytest.mark.asyncio
async def test_unavailable_endpoint_waits_longest(
    connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    manager = ChannelConnectionManager(
        connector, scheduler, base_delay=1, max_delay=30, unavailable_delay=60,
    )
    connector.failures = [ChannelUnavailableError("503 Service Unavailable")]

    conn = manager.subscribe(KEY, URL, on_message)
    await drain()

    assert [t.delay for t in scheduler.pending] == [60]
    assert conn.last_error.startswith("unavailable")


@pytest.mark.asyncio
async def test_normal_close_from_server_is_final(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()

    connector.last.drop(1000)
    await drain()

    assert conn.state is ConnectionState.CLOSED
    assert scheduler.pending == []
    assert manager.get(KEY) is None


@pytest.mark.asyncio
async def test_resubscribe_after_server_close(manager, connector: FakeConnector, on_message):
    first = manager.subscribe(KEY, URL, on_message)
    await drain()
    connector.last.drop(1000)
    await drain()

    second = manager.subscribe(KEY, URL, on_message)
    await drain()

    assert second is not first
    assert second.state is ConnectionState.OPEN


@pytest.mark.asyncio
async def test_unsubscribe_wins_over_pending_reconnect(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()
    connector.last.drop(1006)
    await drain()
    (timer,) = scheduler.pending

    await manager.unsubscribe(KEY)
    scheduler.fire(timer)
    await drain()

    assert timer.cancelled
    assert conn.state is ConnectionState.CLOSED
    assert connector.urls == [URL]
    assert manager.get(KEY) is None


@pytest.mark.asyncio
async def test_old_timer_does_not_touch_new_subscription(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    manager.subscribe(KEY, URL, on_message)
    await drain()
    connector.last.drop(1006)
    await drain()
    (stale,) = scheduler.pending

    await manager.unsubscribe(KEY)
    fresh = manager.subscribe(KEY, URL, on_message)
    await drain()
    scheduler.fire(stale)
    await drain()

    assert len(connector.urls) == 2
    assert fresh.state is ConnectionState.OPEN


@pytest.mark.asyncio
async def test_unsubscribe_closes_socket_normally(manager, connector: FakeConnector, on_message):
    states = []
    manager.subscribe(KEY, URL, on_message, states.append)
    await drain()

    await manager.unsubscribe(KEY)

    assert connector.last.closed_with == 1000
    assert states[-2:] == [ConnectionState.CLOSING, ConnectionState.CLOSED]
    await manager.unsubscribe(KEY)


@pytest.mark.asyncio
async def test_unsubscribe_during_handshake(manager, connector: FakeConnector, on_message):
    connector.gate = asyncio.Event()
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()
    assert conn.state is ConnectionState.CONNECTING

    await manager.unsubscribe(KEY)
    connector.gate.set()
    await drain()

    assert conn.state is ConnectionState.CLOSED
    assert connector.sockets == []


@pytest.mark.asyncio
async def test_send_only_when_open(manager, connector: FakeConnector, on_message):
    assert await manager.send(KEY, "x") is False

    manager.subscribe(KEY, URL, on_message)
    await drain()

    assert await manager.send(KEY, '{"message": "hi"}') is True
    assert connector.last.sent == ['{"message": "hi"}']

    connector.last.drop(1006)
    await drain()
    assert await manager.send(KEY, "y") is False


@pytest.mark.asyncio
async def test_handler_error_keeps_channel_open(manager, connector: FakeConnector):
    seen = []

    async def flaky(raw):
        seen.append(raw)
        if len(seen) == 1:
            raise ValueError("bad frame")

    conn = manager.subscribe(KEY, URL, flaky)
    await drain()
    connector.last.push("a")
    connector.last.push("b")
    await drain()

    assert seen == ["a", "b"]
    assert conn.state is ConnectionState.OPEN


@pytest.mark.asyncio
async def test_transport_error_reconnects(
    manager, connector: FakeConnector, scheduler: FakeScheduler, on_message,
):
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()
    socket = connector.last

    socket.fail(OSError("reset by peer"))
    await drain()

    assert conn.state is ConnectionState.RECONNECTING
    assert socket.closed_with == 1000
    assert len(scheduler.pending) == 1


@pytest.mark.asyncio
async def test_close_all(manager, connector: FakeConnector, on_message):
    manager.subscribe("chat:10", URL, on_message)
    manager.subscribe("notifications:42", "ws://api.test/ws/notifications/?token=tok", on_message)
    await drain()

    await manager.close_all()

    assert manager.keys() == []
    assert all(s.closed_with == 1000 for s in connector.sockets)


def test_backoff_delay_formula(manager):
    assert [manager.backoff_delay(n) for n in range(8)] == [1, 2, 4, 8, 16, 30, 30, 30]


@pytest.mark.asyncio
async def test_unsubscribe_waits_for_reader_task(manager, connector: FakeConnector, on_message):
    conn = manager.subscribe(KEY, URL, on_message)
    await drain()
    task = conn.task

    await manager.unsubscribe(KEY)

    assert task.done()
    assert conn.task is None
