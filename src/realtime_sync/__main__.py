"""Entrypoint: python -m realtime_sync

Tails the notification stream of USER_ID and logs every change.
"""
from __future__ import annotations

import asyncio
import logging

from realtime_sync.client import create_client
from realtime_sync.config import settings

logger = logging.getLogger("realtime_sync")


async def tail_notifications() -> None:
    if settings.USER_ID is None:
        raise SystemExit("USER_ID is not set")

    async with create_client(settings) as client:
        notifications = client.notifications

        def on_change() -> None:
            state = notifications.state
            logger.info(
                "notifications=%d unread=%d channel=%s",
                len(state.items), state.unread_count, notifications.channel_state,
            )

        notifications.add_listener(on_change)
        await notifications.open(settings.USER_ID)
        await notifications.load()
        await asyncio.Event().wait()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(tail_notifications())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
