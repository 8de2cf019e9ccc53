from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from realtime_sync.domain.value_objects.ids import EntityId


@dataclass(frozen=True, slots=True)
class Message:
    id: EntityId
    conversation_id: EntityId
    sender_id: EntityId | None
    content: str
    created_at: datetime
    is_own: bool
    is_read: bool
    provisional: bool = False
