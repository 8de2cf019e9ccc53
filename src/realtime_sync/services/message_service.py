"""Chat facade: conversations, per-conversation message threads and sending."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import timedelta
from typing import Any, Callable, Mapping

from realtime_sync.application.exceptions import NotFoundError, ValidationError
from realtime_sync.application.ports.clock import Clock
from realtime_sync.application.ports.scheduler import Scheduler
from realtime_sync.config import Settings
from realtime_sync.domain.entities.conversation import Conversation
from realtime_sync.domain.entities.message import Message
from realtime_sync.domain.events.entity_events import (
    EntityCreated,
    EntityDeleted,
    EntityEvent,
    EntityUpdated,
    UnreadRecount,
)
from realtime_sync.domain.value_objects.enums import ConnectionState, PushEventType
from realtime_sync.domain.value_objects.ids import EntityId, new_provisional_id
from realtime_sync.infrastructure.http.fetch import ResilientFetcher
from realtime_sync.infrastructure.mappers import conversation as conversation_mapper
from realtime_sync.infrastructure.mappers import message as message_mapper
from realtime_sync.infrastructure.mappers.common import unwrap_results
from realtime_sync.infrastructure.ws.manager import ChannelConnectionManager
from realtime_sync.infrastructure.ws.protocol import encode_chat_message, parse_push_event
from realtime_sync.services import reducer
from realtime_sync.services.reducer import ConversationState, MessageState

logger = logging.getLogger(__name__)

CONVERSATIONS = "/api/chat/conversations/"

Listener = Callable[[], None]


def stream_key(conversation_id: EntityId) -> str:
    return f"chat:{conversation_id}"


def _message_items(data: Any) -> list[Any]:
    # The conversation detail endpoint may nest its messages.
    if isinstance(data, Mapping) and isinstance(data.get("messages"), list):
        return data["messages"]
    return unwrap_results(data)


class MessageSync:
    """The chat streams as seen by the UI.

    With live channels disabled there is no socket at all: sends go
    through REST and the open conversation is polled instead.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        channels: ChannelConnectionManager | None,
        settings: Settings,
        clock: Clock,
        scheduler: Scheduler,
        *,
        user_id: EntityId | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._channels = channels
        self._settings = settings
        self._clock = clock
        self._scheduler = scheduler
        self._user_id = user_id
        # No user id: echoes cannot be attributed, so any sender may confirm a provisional.
        self._any_sender = user_id is None
        self._live = settings.LIVE_CHANNELS_ENABLED and channels is not None
        self._window = timedelta(seconds=settings.RECONCILE_WINDOW_SECONDS)
        self._conversations = ConversationState()
        self._threads: dict[str, MessageState] = {}
        self._current: EntityId | None = None
        self._open_keys: dict[str, EntityId] = {}
        self._poll_task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []

    @property
    def conversations(self) -> ConversationState:
        return self._conversations

    @property
    def unread_count(self) -> int:
        return self._conversations.total_unread

    @property
    def current_conversation_id(self) -> EntityId | None:
        return self._current

    @property
    def degraded(self) -> bool:
        if not self._live or self._current is None:
            return False
        conn = self._channels.get(stream_key(self._current))
        return conn is None or conn.state is not ConnectionState.OPEN

    def messages(self, conversation_id: EntityId | None = None) -> MessageState:
        cid = self._current if conversation_id is None else conversation_id
        if cid is None:
            return MessageState()
        return self._thread(cid)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def load_conversations(
        self, page: int = 1, limit: int | None = None, *, force_refresh: bool = False,
    ) -> ConversationState:
        params = {"page": page, "limit": limit or self._settings.PAGE_SIZE}
        data = await self._fetcher.get(CONVERSATIONS, params, force_refresh=force_refresh)
        batch = [conversation_mapper.payload_to_entity(raw) for raw in unwrap_results(data)]
        self._conversations = reducer.merge_conversation_page(self._conversations, batch)
        self._notify()
        return self._conversations

    async def load(
        self, conversation_id: EntityId, page: int = 1, *, force_refresh: bool = False,
    ) -> MessageState:
        params = {"page": page, "limit": self._settings.PAGE_SIZE}
        data = await self._fetcher.get(
            f"{CONVERSATIONS}{conversation_id}/", params, force_refresh=force_refresh,
        )
        received_at = self._clock.now()
        batch = [
            message_mapper.payload_to_entity(
                raw,
                current_user_id=self._user_id,
                conversation_id=conversation_id,
                received_at=received_at,
            )
            for raw in _message_items(data)
        ]
        thread = reducer.merge_message_page(
            self._thread(conversation_id), batch,
            now=received_at, window=self._window, any_sender=self._any_sender,
        )
        self._set_thread(conversation_id, thread)
        return self._thread(conversation_id)

    async def open(self, conversation_id: EntityId) -> MessageState:
        """Make ``conversation_id`` current: subscribe, load its messages, mark them read."""
        if self._current is not None and stream_key(self._current) != stream_key(conversation_id):
            await self.close(self._current)
        self._current = conversation_id

        if self._live:
            key = stream_key(conversation_id)
            self._open_keys[key] = conversation_id

            async def on_message(raw: str) -> None:
                await self._on_message(conversation_id, raw)

            self._channels.subscribe(
                key, self._settings.chat_ws_url(conversation_id), on_message, self._on_state_change,
            )
        else:
            self._start_polling(conversation_id)

        await self.load(conversation_id, force_refresh=True)
        try:
            await self.mark_read(conversation_id)
        except NotFoundError:
            logger.debug("Conversation %s has no mark-read endpoint yet", conversation_id)
        return self._thread(conversation_id)

    async def close(self, conversation_id: EntityId | None = None) -> None:
        cid = self._current if conversation_id is None else conversation_id
        if cid is None:
            return
        key = stream_key(cid)
        if self._open_keys.pop(key, None) is not None:
            await self._channels.unsubscribe(key)
        if self._current is not None and stream_key(self._current) == key:
            self._current = None
            await self._stop_polling()

    async def aclose(self) -> None:
        for key in list(self._open_keys):
            self._open_keys.pop(key)
            await self._channels.unsubscribe(key)
        self._current = None
        await self._stop_polling()

    async def send(self, content: str, conversation_id: EntityId | None = None) -> Message:
        """Show the message at once, then deliver it over the channel or REST.

        Returns the provisional message when it went over the channel (the
        echo reconciles it later) or the confirmed one when REST answered.
        If REST fails the provisional message is withdrawn and the error
        propagates.
        """
        cid = self._current if conversation_id is None else conversation_id
        if cid is None:
            raise ValidationError("no conversation selected")
        content = content.strip()
        if not content:
            raise ValidationError("message is empty")

        provisional = Message(
            id=new_provisional_id(),
            conversation_id=cid,
            sender_id=self._user_id,
            content=content,
            created_at=self._clock.now(),
            is_own=True,
            is_read=True,
            provisional=True,
        )
        self._set_thread(cid, reducer.add_provisional(self._thread(cid), provisional))

        if self._live and stream_key(cid) in self._open_keys:
            if await self._channels.send(stream_key(cid), encode_chat_message(content)):
                return provisional

        try:
            data = await self._fetcher.post(f"{CONVERSATIONS}{cid}/send/", {"content": content})
        except Exception:
            self._set_thread(cid, reducer.remove_message(self._thread(cid), provisional.id))
            raise

        if not isinstance(data, Mapping):
            return provisional
        confirmed = message_mapper.payload_to_entity(
            data, current_user_id=self._user_id, conversation_id=cid, received_at=self._clock.now(),
        )
        # This reply is for our own send whatever sender the server reports.
        confirmed = dataclasses.replace(confirmed, is_own=True)
        self._apply(cid, EntityCreated(confirmed))
        return confirmed

    async def mark_read(self, conversation_id: EntityId | None = None) -> None:
        cid = self._current if conversation_id is None else conversation_id
        if cid is None:
            return
        conversations = reducer.mark_conversation_read(self._conversations, cid)
        if conversations is not self._conversations:
            self._conversations = conversations
            self._notify()
        self._set_thread(cid, reducer.mark_messages_read(self._thread(cid)))
        await self._fetcher.patch(f"{CONVERSATIONS}{cid}/mark_as_read/", {}, retry=True)

    async def start_conversation(self, user_id: EntityId) -> Conversation:
        data = await self._fetcher.post(f"{CONVERSATIONS}start/", {"user_id": user_id})
        conversation = conversation_mapper.payload_to_entity(data)
        self._conversations = reducer.upsert_conversation(self._conversations, conversation)
        self._notify()
        return conversation

    async def search(self, query: str) -> list[Conversation]:
        data = await self._fetcher.get(f"{CONVERSATIONS}search/", {"q": query})
        return [conversation_mapper.payload_to_entity(raw) for raw in unwrap_results(data)]

    def _thread(self, conversation_id: EntityId) -> MessageState:
        thread = self._threads.get(str(conversation_id))
        if thread is None:
            thread = MessageState(conversation_id=conversation_id)
        return thread

    def _set_thread(self, conversation_id: EntityId, state: MessageState) -> None:
        if self._threads.get(str(conversation_id)) is state:
            return
        self._threads[str(conversation_id)] = state
        self._notify()

    def _apply(self, conversation_id: EntityId, event: EntityEvent) -> None:
        thread = reducer.reduce_messages(
            self._thread(conversation_id), event,
            now=self._clock.now(), window=self._window, any_sender=self._any_sender,
        )
        if isinstance(event, EntityCreated):
            message = event.entity
            self._conversations = reducer.touch_conversation(
                self._conversations, conversation_id, message.content, message.created_at,
            )
        self._set_thread(conversation_id, thread)

    async def _on_message(self, conversation_id: EntityId, raw: str) -> None:
        event = parse_push_event(raw)
        if event is None or event.type is PushEventType.CONNECTION_ACK:
            return
        entity = event.entity
        entity_event: EntityEvent | None = None
        if event.type is PushEventType.CREATION and entity:
            message = message_mapper.payload_to_entity(
                entity,
                current_user_id=self._user_id,
                conversation_id=conversation_id,
                received_at=self._clock.now(),
            )
            entity_event = EntityCreated(message, event.unread_count)
        elif entity.get("id") is not None and event.type is PushEventType.UPDATE:
            entity_event = EntityUpdated(
                entity["id"], message_mapper.payload_to_changes(entity), event.unread_count,
            )
        elif entity.get("id") is not None and event.type is PushEventType.DELETION:
            entity_event = EntityDeleted(entity["id"], event.unread_count)
        elif event.unread_count is not None:
            entity_event = UnreadRecount(event.unread_count)
        if entity_event is not None:
            self._apply(conversation_id, entity_event)

    def _on_state_change(self, state: ConnectionState) -> None:
        logger.debug("Chat channel -> %s", state)
        self._notify()

    def _start_polling(self, conversation_id: EntityId) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
        self._poll_task = asyncio.create_task(
            self._poll(conversation_id), name=f"chat-poll-{conversation_id}",
        )

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll(self, conversation_id: EntityId) -> None:
        interval = self._settings.POLL_INTERVAL_SECONDS
        while True:
            await self._scheduler.sleep(interval)
            try:
                await self.load(conversation_id, force_refresh=True)
                await self.load_conversations(force_refresh=True)
            except Exception as exc:
                logger.warning("Polling conversation %s failed: %s", conversation_id, exc)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Message listener failed")
