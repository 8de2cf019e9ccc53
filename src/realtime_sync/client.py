from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

from realtime_sync.application.ports.channel import ChannelConnector
from realtime_sync.application.ports.clock import Clock, SystemClock
from realtime_sync.application.ports.http import HttpTransport
from realtime_sync.application.ports.scheduler import AsyncioScheduler, Scheduler
from realtime_sync.config import Settings
from realtime_sync.config import settings as default_settings
from realtime_sync.infrastructure.http.cache import ResponseCache
from realtime_sync.infrastructure.http.client import HttpxTransport
from realtime_sync.infrastructure.http.fetch import ResilientFetcher
from realtime_sync.infrastructure.ws.manager import ChannelConnectionManager
from realtime_sync.services.message_service import MessageSync
from realtime_sync.services.notification_service import NotificationSync

logger = logging.getLogger(__name__)


@dataclass
class SyncClient:
    """Everything one signed-in session needs, wired together."""

    settings: Settings
    cache: ResponseCache
    fetcher: ResilientFetcher
    channels: ChannelConnectionManager | None
    notifications: NotificationSync
    messages: MessageSync
    transport: HttpTransport

    async def start(self) -> None:
        await self.cache.start()
        logger.info(
            "Sync client started (live_channels=%s)", self.channels is not None,
        )

    async def aclose(self) -> None:
        """Logout / shutdown: close every channel, stop the sweep, release HTTP."""
        await self.notifications.close()
        await self.messages.aclose()
        if self.channels is not None:
            await self.channels.close_all()
        await self.cache.stop()
        self.cache.clear()
        await self.transport.aclose()
        logger.info("Sync client closed")

    async def __aenter__(self) -> SyncClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def create_client(
    settings: Settings | None = None,
    *,
    http_transport: HttpTransport | None = None,
    connector: ChannelConnector | None = None,
    clock: Clock | None = None,
    scheduler: Scheduler | None = None,
) -> SyncClient:
    settings = settings or default_settings
    clock = clock or SystemClock()
    scheduler = scheduler or AsyncioScheduler()
    transport = http_transport or HttpxTransport(
        settings.API_BASE_URL,
        token=settings.AUTH_TOKEN,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )

    cache = ResponseCache(
        clock,
        scheduler,
        default_ttl=settings.CACHE_TTL_SECONDS,
        sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
    )
    fetcher = ResilientFetcher(
        transport,
        cache,
        scheduler,
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
    )

    channels: ChannelConnectionManager | None = None
    if settings.LIVE_CHANNELS_ENABLED:
        if connector is None:
            from realtime_sync.infrastructure.ws.connector import WebsocketsConnector

            connector = WebsocketsConnector(open_timeout=settings.WS_HANDSHAKE_TIMEOUT_SECONDS)
        channels = ChannelConnectionManager(
            connector,
            scheduler,
            base_delay=settings.RECONNECT_BASE_DELAY_SECONDS,
            max_delay=settings.RECONNECT_MAX_DELAY_SECONDS,
            exponent_cap=settings.RECONNECT_EXPONENT_CAP,
            handshake_timeout=settings.WS_HANDSHAKE_TIMEOUT_SECONDS,
        )

    return SyncClient(
        settings=settings,
        cache=cache,
        fetcher=fetcher,
        channels=channels,
        notifications=NotificationSync(fetcher, channels, settings, clock),
        messages=MessageSync(fetcher, channels, settings, clock, scheduler, user_id=settings.USER_ID),
        transport=transport,
    )
