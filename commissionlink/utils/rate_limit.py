"""Per-shop request pacing for the Shopify Admin API."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ShopRateLimiter:
    """Spaces calls to the same shop at least ``1 / rate`` seconds apart."""

    def __init__(self, *, rate: float = 2.0) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.min_interval = 1.0 / rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._next_slot: dict[str, float] = defaultdict(float)

    @asynccontextmanager
    async def slot(self, shop: str) -> AsyncIterator[None]:
        async with self._locks[shop]:
            wait = self._next_slot[shop] - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_slot[shop] = time.monotonic() + self.min_interval
        yield

    def reset(self, shop: str) -> None:
        self._next_slot.pop(shop, None)
