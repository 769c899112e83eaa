"""Bounded retry for transient backend errors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from rosa_provisioner.errors import TransientBackendError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

logger = logging.getLogger(__name__)


async def retry_transient(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    sleep: Sleep = asyncio.sleep,
    label: str = "backend call",
) -> T:
    """Call ``fn`` retrying ``TransientBackendError`` up to ``attempts`` extra times.

    Any other exception propagates immediately. The last transient error is
    re-raised once the attempts are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except TransientBackendError as exc:
            if attempt >= attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempt + 1, exc)
                raise
            backoff = min(base_delay * (2**attempt), max_delay)
            logger.debug(
                "%s hit a transient error (%s); retrying in %.1fs", label, exc, backoff
            )
            await sleep(backoff)
            attempt += 1
