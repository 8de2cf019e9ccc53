from __future__ import annotations

from typing import Any, Mapping

from realtime_sync.domain.entities.conversation import Conversation
from realtime_sync.infrastructure.mappers.common import first_present, parse_datetime, ref_id


def conversation_id_of(raw: Mapping[str, Any]) -> Any:
    return first_present(raw, "id", "id_conversation", "conversation_id")


def payload_to_entity(raw: Mapping[str, Any]) -> Conversation:
    participants = tuple(
        ref_id(p, "id_user", "id") for p in raw.get("participants") or ()
    )
    last_message = raw.get("last_message")
    if isinstance(last_message, Mapping):
        last_message = first_present(last_message, "content", "message", "body")
    return Conversation(
        id=conversation_id_of(raw),
        participants=participants,
        last_message=last_message,
        unread_count=int(raw.get("unread_count") or 0),
        updated_at=parse_datetime(first_present(raw, "updated_at", "last_message_at")),
    )
