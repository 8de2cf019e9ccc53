from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from realtime_sync.domain.value_objects.ids import EntityId


@dataclass(frozen=True, slots=True)
class Conversation:
    id: EntityId
    participants: tuple[EntityId, ...]
    last_message: str | None
    unread_count: int
    updated_at: datetime | None
