from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Mapping

from realtime_sync.domain.entities.message import Message
from realtime_sync.domain.value_objects.ids import EntityId
from realtime_sync.infrastructure.mappers.common import first_present, parse_datetime, ref_id


def sender_of(raw: Mapping[str, Any]) -> EntityId | None:
    sender = ref_id(raw.get("sender"), "id_user", "id")
    if sender is None:
        sender = raw.get("sender_id")
    return sender


def payload_to_entity(
    raw: Mapping[str, Any],
    *,
    current_user_id: EntityId | None,
    conversation_id: EntityId | None = None,
    received_at: datetime,
) -> Message:
    """Build a Message from a REST item or channel echo.

    ``received_at`` stands in for a missing ``created_at`` so the message
    still sorts after what is already held.
    """
    sender_id = sender_of(raw)
    message_id = first_present(raw, "id", "id_message")
    if message_id is None:
        message_id = f"echo-{uuid.uuid4().hex}"
    raw_conversation = ref_id(
        first_present(raw, "conversation_id", "conversation", "id_conversation"),
        "id", "id_conversation",
    )
    return Message(
        id=message_id,
        conversation_id=raw_conversation if raw_conversation is not None else conversation_id,
        sender_id=sender_id,
        content=str(first_present(raw, "content", "message", "body", default="")),
        created_at=parse_datetime(raw.get("created_at")) or received_at,
        is_own=current_user_id is not None and sender_id is not None and str(sender_id) == str(current_user_id),
        is_read=bool(raw.get("is_read", False)),
    )


def payload_to_changes(raw: Mapping[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if "is_read" in raw:
        changes["is_read"] = bool(raw["is_read"])
    content = first_present(raw, "content", "message", "body")
    if content is not None:
        changes["content"] = str(content)
    return changes
