"""Notifications facade: REST pages, the live channel and local state behind one API."""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from realtime_sync.application.ports.clock import Clock
from realtime_sync.config import Settings
from realtime_sync.domain.entities.notification import Notification
from realtime_sync.domain.events.entity_events import (
    EntityCreated,
    EntityDeleted,
    EntityEvent,
    EntityUpdated,
    UnreadRecount,
)
from realtime_sync.domain.value_objects.enums import ConnectionState, PushEventType
from realtime_sync.domain.value_objects.ids import EntityId
from realtime_sync.infrastructure.http.fetch import ResilientFetcher
from realtime_sync.infrastructure.mappers import notification as notification_mapper
from realtime_sync.infrastructure.mappers.common import unwrap_results
from realtime_sync.infrastructure.ws.manager import ChannelConnectionManager
from realtime_sync.infrastructure.ws.protocol import (
    PushEvent,
    encode_get_unread_count,
    encode_mark_as_read,
    parse_push_event,
)
from realtime_sync.services import reducer
from realtime_sync.services.reducer import NotificationState

logger = logging.getLogger(__name__)

NOTIFICATIONS = "/notifications/"
NOTIFICATION_STATS = "/notifications/stats/"
MARK_ALL_READ = "/notifications/mark-all-read/"

Listener = Callable[[], None]


def stream_key(user_id: EntityId) -> str:
    return f"notifications:{user_id}"


def to_entity_event(event: PushEvent) -> EntityEvent | None:
    entity = event.entity
    if event.type is PushEventType.CREATION:
        if not entity:
            return UnreadRecount(event.unread_count) if event.unread_count is not None else None
        return EntityCreated(notification_mapper.payload_to_entity(entity), event.unread_count)

    entity_id = entity.get("id")
    if entity_id is None:
        return UnreadRecount(event.unread_count) if event.unread_count is not None else None
    if event.type is PushEventType.UPDATE:
        return EntityUpdated(entity_id, notification_mapper.payload_to_changes(entity), event.unread_count)
    if event.type is PushEventType.DELETION:
        return EntityDeleted(entity_id, event.unread_count)
    return None


class NotificationSync:
    """The notifications stream as seen by the UI.

    ``mark_read`` is optimistic and is not rolled back if the server call
    fails; the local flag stays stale until the next ``reload``.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        channels: ChannelConnectionManager | None,
        settings: Settings,
        clock: Clock,
    ) -> None:
        self._fetcher = fetcher
        self._channels = channels
        self._settings = settings
        self._clock = clock
        self._live = settings.LIVE_CHANNELS_ENABLED and channels is not None
        self._state = NotificationState()
        self._page = 0
        self._key: str | None = None
        self._listeners: list[Listener] = []

    @property
    def state(self) -> NotificationState:
        return self._state

    @property
    def unread_count(self) -> int:
        return self._state.unread_count

    @property
    def page(self) -> int:
        return self._page

    @property
    def channel_state(self) -> ConnectionState | None:
        if not self._live or self._key is None:
            return None
        conn = self._channels.get(self._key)
        return conn.state if conn is not None else ConnectionState.CLOSED

    @property
    def degraded(self) -> bool:
        """True while a live channel was requested but is not open."""
        state = self.channel_state
        return state is not None and state is not ConnectionState.OPEN

    def time_ago(self, notification: Notification) -> str:
        return notification.relative_time(self._clock.now())

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def load(self, page: int = 1, limit: int | None = None, *, force_refresh: bool = False) -> NotificationState:
        params = {"page": page, "limit": limit or self._settings.PAGE_SIZE}
        data = await self._fetcher.get(NOTIFICATIONS, params, force_refresh=force_refresh)
        batch = [notification_mapper.payload_to_entity(raw) for raw in unwrap_results(data)]
        self._page = max(self._page, page)
        self._commit(reducer.merge_notification_page(self._state, batch))
        return self._state

    async def load_more(self) -> NotificationState:
        return await self.load(self._page + 1)

    async def reload(self) -> NotificationState:
        """Drop local state (and any optimistic drift) and fetch page 1 again."""
        self._page = 0
        self._commit(NotificationState())
        return await self.load(1, force_refresh=True)

    async def refresh_unread_count(self) -> int:
        stats = await self._fetcher.get(NOTIFICATION_STATS, use_cache=False)
        count = _unread_from_stats(stats)
        if count is not None:
            self._commit(reducer.reduce_notifications(self._state, UnreadRecount(count)))
        return self._state.unread_count

    async def open(self, user_id: EntityId) -> None:
        """Follow ``user_id``'s stream; a channel held for another user is released first."""
        key = stream_key(user_id)
        if self._key is not None and self._key != key:
            await self.close()
            self._page = 0
            self._commit(NotificationState())
        self._key = key
        if not self._live:
            logger.debug("Live channels disabled; notifications for %s use REST only", user_id)
            return
        self._channels.subscribe(
            self._key,
            self._settings.notifications_ws_url,
            self._on_message,
            self._on_state_change,
        )

    async def close(self) -> None:
        key, self._key = self._key, None
        if key is not None and self._live:
            await self._channels.unsubscribe(key)

    async def mark_read(self, notification_id: EntityId) -> None:
        self._commit(reducer.update_notification(self._state, notification_id, {"is_read": True}))
        if await self._send(encode_mark_as_read(notification_id)):
            return
        await self._fetcher.post(f"{NOTIFICATIONS}{notification_id}/mark-read/", retry=True)

    async def mark_all_read(self) -> None:
        self._commit(reducer.mark_all_notifications_read(self._state))
        await self._fetcher.post(MARK_ALL_READ, retry=True)

    async def delete(self, notification_id: EntityId) -> None:
        await self._fetcher.delete(f"{NOTIFICATIONS}{notification_id}/")
        self._commit(reducer.remove_notification(self._state, notification_id))

    async def _send(self, payload: str) -> bool:
        if not self._live or self._key is None:
            return False
        return await self._channels.send(self._key, payload)

    async def _on_message(self, raw: str) -> None:
        event = parse_push_event(raw)
        if event is None:
            return
        if event.type is PushEventType.CONNECTION_ACK:
            if event.unread_count is not None:
                self._commit(reducer.reduce_notifications(self._state, UnreadRecount(event.unread_count)))
            await self._send(encode_get_unread_count())
            return
        entity_event = to_entity_event(event)
        if entity_event is not None:
            self._commit(reducer.reduce_notifications(self._state, entity_event))

    def _on_state_change(self, state: ConnectionState) -> None:
        logger.debug("Notifications channel %s -> %s", self._key, state)
        self._notify()

    def _commit(self, state: NotificationState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Notification listener failed")


def _unread_from_stats(stats: Any) -> int | None:
    if not isinstance(stats, Mapping):
        return None
    for key in ("unread_count", "unread"):
        value = stats.get(key)
        if value is not None:
            return int(value)
    return None
