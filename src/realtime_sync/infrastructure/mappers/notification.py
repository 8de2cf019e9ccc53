from __future__ import annotations

import uuid
from typing import Any, Mapping

from realtime_sync.domain.entities.notification import Notification
from realtime_sync.domain.value_objects.enums import NotificationType
from realtime_sync.infrastructure.mappers.common import first_present, parse_datetime

_KNOWN_TYPES = frozenset(NotificationType)

# payload key -> entity field, for partial updates
_FIELDS = {
    "title": "title",
    "message": "message",
    "is_read": "is_read",
    "read": "is_read",
    "time_ago": "time_ago",
    "metadata": "metadata",
}


def notification_type(raw: Mapping[str, Any]) -> str:
    value = first_present(raw, "notification_type", "type")
    if isinstance(value, str) and value in _KNOWN_TYPES:
        return value
    return NotificationType.GENERIC


def payload_to_entity(raw: Mapping[str, Any]) -> Notification:
    notification_id = raw.get("id")
    if notification_id is None:
        notification_id = f"push-{uuid.uuid4().hex}"
    return Notification(
        id=notification_id,
        type=notification_type(raw),
        title=str(raw.get("title") or ""),
        message=str(raw.get("message") or ""),
        is_read=bool(first_present(raw, "is_read", "read", default=False)),
        created_at=parse_datetime(raw.get("created_at")),
        time_ago=raw.get("time_ago"),
        metadata=raw.get("metadata"),
    )


def payload_to_changes(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Fields an update event actually carries, under entity field names."""
    changes: dict[str, Any] = {}
    for key, field_name in _FIELDS.items():
        if key in raw:
            changes[field_name] = bool(raw[key]) if field_name == "is_read" else raw[key]
    if "created_at" in raw:
        changes["created_at"] = parse_datetime(raw["created_at"])
    if "notification_type" in raw or "type" in raw:
        changes["type"] = notification_type(raw)
    return changes
