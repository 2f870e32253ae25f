"""Backoff for Shopify API throttling."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable


class Throttled(Exception):
    """Shopify rejected the call for exceeding the shop's rate budget."""

    def __init__(self, message: str = "Throttled", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


def retry_throttled(func: Callable[..., Awaitable], *, attempts: int = 3, base_delay: float = 1.0):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except Throttled as exc:
                if attempt == attempts - 1:
                    raise
                wait = exc.retry_after if exc.retry_after is not None else delay + random.random()
                await asyncio.sleep(wait)
                delay *= 2
    return wrapper
