"""In-memory response cache with per-entry TTL and an optional background sweep."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from realtime_sync.application.ports.clock import Clock
from realtime_sync.application.ports.scheduler import Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


def fingerprint(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """Deterministic cache key: same endpoint and params in any key order give the same key."""
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{endpoint}?{serialized}"


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class ResponseCache:
    """Maps fingerprints to values until their TTL runs out.

    Expired entries are dropped on lookup, so the sweep only reclaims memory
    and never affects what ``get`` returns.
    """

    def __init__(
        self,
        clock: Clock,
        scheduler: Scheduler,
        *,
        default_ttl: float = 1800.0,
        sweep_interval: float = 600.0,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._entries: dict[str, CacheEntry] = {}
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._clock.monotonic() >= entry.expires_at:
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(key, value, self._clock.monotonic() + ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def invalidate_prefix(self, endpoint: str) -> int:
        stale = [key for key in self._entries if key.startswith(endpoint)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def cleanup(self) -> int:
        """Purge every expired entry. Returns how many were removed."""
        now = self._clock.monotonic()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d entries", len(expired))
        return len(expired)

    async def cached_fetch(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or load, store and return it.

        Not single-flight: concurrent misses on one key each call ``loader``.
        """
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = await loader()
        self.set(key, value, ttl)
        return value

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="response-cache-sweep")
        logger.debug("Cache sweep started (interval=%.0fs)", self._sweep_interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.debug("Cache sweep stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await self._scheduler.sleep(self._sweep_interval)
            try:
                self.cleanup()
            except Exception:
                logger.exception("Cache sweep error")
