"""REST access with caching for reads and bounded retry for transient failures."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from realtime_sync.application.ports.http import HttpTransport
from realtime_sync.application.ports.scheduler import Scheduler
from realtime_sync.infrastructure.http.cache import ResponseCache, fingerprint
from realtime_sync.infrastructure.http.retry import retry

logger = logging.getLogger(__name__)


class ResilientFetcher:
    def __init__(
        self,
        transport: HttpTransport,
        cache: ResponseCache,
        scheduler: Scheduler,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._scheduler = scheduler
        self._max_attempts = max_attempts
        self._base_delay = base_delay

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    async def get(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        ttl: float | None = None,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> Any:
        async def load() -> Any:
            return await self._with_retry("GET", endpoint, params=params)

        key = fingerprint(endpoint, params)
        if not use_cache:
            return await load()
        if force_refresh:
            self._cache.delete(key)
        return await self._cache.cached_fetch(key, load, ttl)

    async def post(self, endpoint: str, payload: Any = None, *, retry: bool = False) -> Any:
        return await self._write("POST", endpoint, payload, retry)

    async def put(self, endpoint: str, payload: Any = None, *, retry: bool = False) -> Any:
        return await self._write("PUT", endpoint, payload, retry)

    async def patch(self, endpoint: str, payload: Any = None, *, retry: bool = False) -> Any:
        return await self._write("PATCH", endpoint, payload, retry)

    async def delete(self, endpoint: str, *, retry: bool = False) -> Any:
        return await self._write("DELETE", endpoint, None, retry)

    def invalidate(self, endpoint: str) -> int:
        return self._cache.invalidate_prefix(endpoint)

    async def _write(self, method: str, endpoint: str, payload: Any, with_retry: bool) -> Any:
        # Any write may change what reads return, so cached reads go either way.
        try:
            if with_retry:
                return await self._with_retry(method, endpoint, json=payload)
            return await self._transport.request(method, endpoint, json=payload)
        finally:
            self._cache.clear()

    async def _with_retry(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        async def call() -> Any:
            return await self._transport.request(method, endpoint, params=params, json=json)

        return await retry(call, self._max_attempts, self._base_delay, self._scheduler.sleep)
