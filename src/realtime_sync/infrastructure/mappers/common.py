"""Helpers shared by the payload mappers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping


def unwrap_results(data: Any) -> list[Any]:
    """List endpoints answer with a bare array or a ``{"results": [...]}`` page."""
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        results = data.get("results")
        if isinstance(results, list):
            return results
    return []


def first_present(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def ref_id(value: Any, *keys: str) -> Any:
    """Id of a nested reference that may be inlined as an object."""
    if isinstance(value, Mapping):
        return first_present(value, *keys)
    return value
