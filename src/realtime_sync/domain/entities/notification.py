from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from realtime_sync.domain.value_objects.ids import EntityId


@dataclass(frozen=True, slots=True)
class Notification:
    id: EntityId
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime | None
    time_ago: str | None = None
    metadata: dict[str, Any] | None = None

    def relative_time(self, now: datetime) -> str:
        """Server-provided ``time_ago`` or a coarse fallback computed from ``created_at``."""
        if self.time_ago:
            return self.time_ago
        if self.created_at is None:
            return ""
        minutes = int((now - self.created_at).total_seconds() // 60)
        if minutes < 1:
            return "just now"
        if minutes < 60:
            return f"{minutes} minutes ago"
        if minutes < 1440:
            return f"{minutes // 60} hours ago"
        return f"{minutes // 1440} days ago"
