from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from realtime_sync.application.exceptions import TransientRequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientRequestError)


async def retry(
    loader: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``loader`` until it succeeds or the attempt budget runs out.

    Only transient failures (network, timeout, 5xx) are retried; anything
    else propagates on the spot. The wait before attempt ``n + 1`` is
    ``base_delay * n``. The last failure is re-raised when attempts run out.
    """
    attempt = 1
    while True:
        try:
            return await loader()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_attempts:
                raise
            delay = base_delay * attempt
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt, max_attempts, exc, delay,
            )
            await sleep(delay)
            attempt += 1
