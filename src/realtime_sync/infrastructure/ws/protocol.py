"""Push channel envelope models."""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from realtime_sync.domain.value_objects.enums import ChannelCommand, PushEventType
from realtime_sync.domain.value_objects.ids import EntityId

logger = logging.getLogger(__name__)

_ENVELOPE_TYPES = frozenset(PushEventType)


class PushEvent(BaseModel):
    """Server → Client."""

    type: PushEventType
    entity: dict[str, Any] = {}
    unread_count: int | None = None


class ChatSendCommand(BaseModel):
    """Client → Server on a chat channel."""

    message: str


class NotificationCommand(BaseModel):
    """Client → Server on the notifications channel."""

    type: ChannelCommand
    id: EntityId | None = None


def parse_push_event(raw: str | bytes) -> PushEvent | None:
    """Decode one inbound frame, or None if it is not usable.

    Older servers push a bare notification object instead of an envelope;
    those are read as a creation of that object.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Dropping non-JSON push frame")
        return None
    if not isinstance(data, dict):
        logger.warning("Dropping push frame that is not an object")
        return None

    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in _ENVELOPE_TYPES:
        return PushEvent(type=PushEventType.CREATION, entity=data)
    try:
        return PushEvent.model_validate(data)
    except ValidationError:
        logger.warning("Dropping malformed push event of type %s", event_type)
        return None


def encode_chat_message(content: str) -> str:
    return ChatSendCommand(message=content).model_dump_json()


def encode_mark_as_read(notification_id: EntityId) -> str:
    return NotificationCommand(type=ChannelCommand.MARK_AS_READ, id=notification_id).model_dump_json()


def encode_get_unread_count() -> str:
    return NotificationCommand(type=ChannelCommand.GET_UNREAD_COUNT).model_dump_json(exclude_none=True)
