"""Pure state transitions for notifications, conversations and messages.

Every function takes the current state and returns a new one; nothing is
mutated in place. Unread counters are recomputed from the held entities
after each step unless the server sent an authoritative count with the
event, in which case that count is used instead.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from realtime_sync.domain.entities.conversation import Conversation
from realtime_sync.domain.entities.message import Message
from realtime_sync.domain.entities.notification import Notification
from realtime_sync.domain.events.entity_events import (
    EntityCreated,
    EntityDeleted,
    EntityEvent,
    EntityUpdated,
    UnreadRecount,
)
from realtime_sync.domain.value_objects.ids import EntityId

E = TypeVar("E", Notification, Message, Conversation)


@dataclass(frozen=True, slots=True)
class NotificationState:
    """Newest first."""

    items: tuple[Notification, ...] = ()
    unread_count: int = 0


@dataclass(frozen=True, slots=True)
class MessageState:
    """One conversation's messages, oldest first by ``created_at``."""

    conversation_id: EntityId | None = None
    items: tuple[Message, ...] = ()
    unread_count: int = 0


@dataclass(frozen=True, slots=True)
class ConversationState:
    items: tuple[Conversation, ...] = ()

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self.items)


def _same(a: EntityId, b: EntityId) -> bool:
    # REST and push payloads do not always agree on int vs str ids.
    return a == b or str(a) == str(b)


def _index_of(items: Sequence[E], entity_id: EntityId) -> int:
    for i, item in enumerate(items):
        if _same(item.id, entity_id):
            return i
    return -1


def _replace_at(items: tuple[E, ...], index: int, entity: E) -> tuple[E, ...]:
    return items[:index] + (entity,) + items[index + 1:]


def _union(held: tuple[E, ...], batch: Iterable[E], *, prefer_incoming: bool) -> tuple[E, ...]:
    merged = list(held)
    for entity in batch:
        index = _index_of(merged, entity.id)
        if index < 0:
            merged.append(entity)
        elif prefer_incoming:
            merged[index] = entity
    return tuple(merged)


def _chronological(items: Iterable[Message]) -> tuple[Message, ...]:
    return tuple(sorted(items, key=lambda m: m.created_at))


# -- notifications -----------------------------------------------------------

def count_unread_notifications(items: Iterable[Notification]) -> int:
    return sum(1 for n in items if not n.is_read)


def _notifications(items: tuple[Notification, ...], unread_count: int | None) -> NotificationState:
    if unread_count is None:
        unread_count = count_unread_notifications(items)
    return NotificationState(items=items, unread_count=unread_count)


def add_notification(
    state: NotificationState, notification: Notification, unread_count: int | None = None,
) -> NotificationState:
    index = _index_of(state.items, notification.id)
    if index >= 0:
        items = _replace_at(state.items, index, notification)
    else:
        items = (notification,) + state.items
    return _notifications(items, unread_count)


def update_notification(
    state: NotificationState,
    notification_id: EntityId,
    changes: Mapping[str, Any],
    unread_count: int | None = None,
) -> NotificationState:
    index = _index_of(state.items, notification_id)
    if index < 0:
        # Not loaded on this client yet.
        return _notifications(state.items, unread_count) if unread_count is not None else state
    updated = dataclasses.replace(state.items[index], **changes)
    return _notifications(_replace_at(state.items, index, updated), unread_count)


def remove_notification(
    state: NotificationState, notification_id: EntityId, unread_count: int | None = None,
) -> NotificationState:
    items = tuple(n for n in state.items if not _same(n.id, notification_id))
    if len(items) == len(state.items):
        return _notifications(state.items, unread_count) if unread_count is not None else state
    return _notifications(items, unread_count)


def merge_notification_page(
    state: NotificationState, batch: Iterable[Notification],
) -> NotificationState:
    """Append a REST page behind what is held; entities already held win."""
    return _notifications(_union(state.items, batch, prefer_incoming=False), None)


def mark_all_notifications_read(state: NotificationState) -> NotificationState:
    items = tuple(n if n.is_read else dataclasses.replace(n, is_read=True) for n in state.items)
    return _notifications(items, None)


def reduce_notifications(state: NotificationState, event: EntityEvent) -> NotificationState:
    if isinstance(event, EntityCreated):
        return add_notification(state, event.entity, event.unread_count)
    if isinstance(event, EntityUpdated):
        return update_notification(state, event.entity_id, event.changes, event.unread_count)
    if isinstance(event, EntityDeleted):
        return remove_notification(state, event.entity_id, event.unread_count)
    if isinstance(event, UnreadRecount):
        return NotificationState(items=state.items, unread_count=event.unread_count)
    raise TypeError(f"unsupported event {event!r}")


# -- messages ----------------------------------------------------------------

def count_unread_messages(items: Iterable[Message]) -> int:
    return sum(1 for m in items if not m.is_read and not m.is_own)


def _messages(
    conversation_id: EntityId | None, items: tuple[Message, ...], unread_count: int | None,
) -> MessageState:
    if unread_count is None:
        unread_count = count_unread_messages(items)
    return MessageState(conversation_id=conversation_id, items=items, unread_count=unread_count)


def add_provisional(state: MessageState, message: Message) -> MessageState:
    return _messages(state.conversation_id, _chronological(state.items + (message,)), None)


def _provisional_match(
    items: Sequence[Message], echo: Message, now: datetime, window: timedelta,
) -> int:
    """Index of the oldest pending provisional this echo confirms, or -1.

    Provisionals are held in send order, so the first hit is FIFO.
    """
    for i, held in enumerate(items):
        if (
            held.provisional
            and _same(held.conversation_id, echo.conversation_id)
            and held.content == echo.content
            and now - held.created_at <= window
        ):
            return i
    return -1


def _fold_confirmed(
    items: list[Message],
    message: Message,
    now: datetime,
    window: timedelta,
    any_sender: bool,
) -> None:
    index = _index_of(items, message.id)
    if index < 0 and (message.is_own or any_sender):
        index = _provisional_match(items, message, now, window)
        if index >= 0:
            # A confirmed provisional is ours whatever sender the payload names.
            message = dataclasses.replace(message, is_own=True)
    if index >= 0:
        items[index] = message
    else:
        items.append(message)


def receive_message(
    state: MessageState,
    message: Message,
    *,
    now: datetime,
    window: timedelta,
    unread_count: int | None = None,
    any_sender: bool = False,
) -> MessageState:
    """Fold a confirmed message (channel echo, REST reply or push) into the list.

    Known id: replaced in place. Own message with no known id: replaces the
    oldest matching provisional sent within ``window``. Otherwise inserted
    in chronological order. ``any_sender`` lets messages whose sender cannot
    be attributed (no current user known) confirm provisionals too.
    """
    items = list(state.items)
    _fold_confirmed(items, message, now, window, any_sender)
    return _messages(state.conversation_id, _chronological(items), unread_count)


def update_message(
    state: MessageState,
    message_id: EntityId,
    changes: Mapping[str, Any],
    unread_count: int | None = None,
) -> MessageState:
    index = _index_of(state.items, message_id)
    if index < 0:
        return _messages(state.conversation_id, state.items, unread_count) if unread_count is not None else state
    updated = dataclasses.replace(state.items[index], **changes)
    return _messages(state.conversation_id, _replace_at(state.items, index, updated), unread_count)


def remove_message(
    state: MessageState, message_id: EntityId, unread_count: int | None = None,
) -> MessageState:
    items = tuple(m for m in state.items if not _same(m.id, message_id))
    if len(items) == len(state.items):
        return _messages(state.conversation_id, state.items, unread_count) if unread_count is not None else state
    return _messages(state.conversation_id, items, unread_count)


def merge_message_page(
    state: MessageState,
    batch: Iterable[Message],
    *,
    now: datetime,
    window: timedelta,
    any_sender: bool = False,
) -> MessageState:
    """Union a REST page into the thread.

    Held messages win over their page copies. A page item with an unknown
    id still confirms a pending provisional, as an echo would.
    """
    items = list(state.items)
    for message in batch:
        if _index_of(items, message.id) >= 0:
            continue
        _fold_confirmed(items, message, now, window, any_sender)
    return _messages(state.conversation_id, _chronological(items), None)


def mark_messages_read(state: MessageState) -> MessageState:
    items = tuple(
        m if m.is_read or m.is_own else dataclasses.replace(m, is_read=True) for m in state.items
    )
    return _messages(state.conversation_id, items, None)


def reduce_messages(
    state: MessageState,
    event: EntityEvent,
    *,
    now: datetime,
    window: timedelta,
    any_sender: bool = False,
) -> MessageState:
    if isinstance(event, EntityCreated):
        return receive_message(
            state, event.entity, now=now, window=window,
            unread_count=event.unread_count, any_sender=any_sender,
        )
    if isinstance(event, EntityUpdated):
        return update_message(state, event.entity_id, event.changes, event.unread_count)
    if isinstance(event, EntityDeleted):
        return remove_message(state, event.entity_id, event.unread_count)
    if isinstance(event, UnreadRecount):
        return MessageState(
            conversation_id=state.conversation_id, items=state.items, unread_count=event.unread_count,
        )
    raise TypeError(f"unsupported event {event!r}")


# -- conversations -----------------------------------------------------------

def upsert_conversation(state: ConversationState, conversation: Conversation) -> ConversationState:
    index = _index_of(state.items, conversation.id)
    if index >= 0:
        return ConversationState(items=_replace_at(state.items, index, conversation))
    return ConversationState(items=(conversation,) + state.items)


def merge_conversation_page(
    state: ConversationState, batch: Iterable[Conversation],
) -> ConversationState:
    """Union by id. Listed summaries replace held ones: the server computes them."""
    return ConversationState(items=_union(state.items, batch, prefer_incoming=True))


def touch_conversation(
    state: ConversationState,
    conversation_id: EntityId,
    last_message: str,
    updated_at: datetime,
) -> ConversationState:
    index = _index_of(state.items, conversation_id)
    if index < 0:
        return state
    touched = dataclasses.replace(state.items[index], last_message=last_message, updated_at=updated_at)
    return ConversationState(items=_replace_at(state.items, index, touched))


def mark_conversation_read(state: ConversationState, conversation_id: EntityId) -> ConversationState:
    index = _index_of(state.items, conversation_id)
    if index < 0 or state.items[index].unread_count == 0:
        return state
    cleared = dataclasses.replace(state.items[index], unread_count=0)
    return ConversationState(items=_replace_at(state.items, index, cleared))
