"""Events the reducers fold into state, already mapped to domain entities."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from realtime_sync.domain.value_objects.ids import EntityId


@dataclass(frozen=True, slots=True)
class EntityCreated:
    entity: Any
    unread_count: int | None = None


@dataclass(frozen=True, slots=True)
class EntityUpdated:
    entity_id: EntityId
    changes: dict[str, Any] = field(default_factory=dict)
    unread_count: int | None = None


@dataclass(frozen=True, slots=True)
class EntityDeleted:
    entity_id: EntityId
    unread_count: int | None = None


@dataclass(frozen=True, slots=True)
class UnreadRecount:
    """Server-authoritative unread total with no entity attached."""

    unread_count: int


EntityEvent = Union[EntityCreated, EntityUpdated, EntityDeleted, UnreadRecount]
