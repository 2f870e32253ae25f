"""Shopify -> backend product synchronization."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from commissionlink.config import Settings, load_settings
from commissionlink.db.session import create_engine_from_env
from commissionlink.db.tokens import TokenStore
from commissionlink.ingest.backend import BackendClient
from commissionlink.ingest.models import ProductPage, SyncError, SyncResult, SyncStatus
from commissionlink.ingest.shopify import ProductNotFoundError, ShopifyClient, normalize_product
from commissionlink.utils.dates import utc_now
from commissionlink.utils.rate_limit import ShopRateLimiter

logger = logging.getLogger(__name__)


class CatalogReader(Protocol):
    async def fetch_products(
        self, shop_id: str, *, first: int, after: str | None = None, query: str | None = None
    ) -> ProductPage: ...

    async def fetch_product(self, shop_id: str, product_id: str) -> dict[str, Any] | None: ...


@dataclass(slots=True)
class SyncState:
    active: int = 0
    last_sync: datetime | None = None

    @property
    def in_progress(self) -> bool:
        return self.active > 0


class SyncStateStore:
    """Per-shop sync state, local to this process.

    Two processes (or replicas) each keep their own store, so the in-progress
    guard only prevents overlapping syncs within one process.
    """

    def __init__(self) -> None:
        self._states: dict[str, SyncState] = {}

    def get(self, shop_id: str) -> SyncState:
        state = self._states.get(shop_id)
        if state is None:
            state = self._states[shop_id] = SyncState()
        return state

    def peek(self, shop_id: str) -> SyncState | None:
        return self._states.get(shop_id)

    def clear(self, shop_id: str) -> None:
        self._states.pop(shop_id, None)


class ProductSyncManager:
    def __init__(
        self,
        catalog: CatalogReader,
        backend: BackendClient,
        *,
        settings: Settings | None = None,
        states: SyncStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.catalog = catalog
        self.backend = backend
        self.settings = settings or Settings()
        self.states = states or SyncStateStore()
        self.clock = clock

    async def sync_and_fetch(
        self,
        shop_id: str,
        *,
        force_refresh: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Pull the catalog into the backend and return the backend's product set."""
        state = self.states.get(shop_id)
        if state.in_progress and not force_refresh:
            logger.info("Sync already in progress for %s; serving backend data", shop_id)
            return await self.get_backend_products(shop_id)

        state.active += 1
        try:
            if not force_refresh and self.is_recent_sync(shop_id):
                logger.info("Using recently synced data for %s", shop_id)
                return await self.get_backend_products(shop_id)

            logger.info("Starting product sync for %s", shop_id)
            nodes = await self.fetch_shopify_products(shop_id, limit or self.settings.sync_default_limit)
            if not nodes:
                logger.info("No products found in Shopify for %s", shop_id)
                return []

            result = await self.push_products(shop_id, nodes)
            products = await self.get_backend_products(shop_id)
            state.last_sync = self.clock()
            logger.info(
                "Product sync completed for %s: %s synced, %s failed", shop_id, result.successful, result.failed
            )
            return products
        except Exception:
            logger.exception("Product sync failed for %s", shop_id)
            raise
        finally:
            state.active -= 1

    async def fetch_shopify_products(self, shop_id: str, limit: int) -> list[dict[str, Any]]:
        """Read up to ``limit`` product nodes, following pagination cursors."""
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None
        while len(nodes) < limit:
            first = min(self.settings.sync_page_size, limit - len(nodes))
            page = await asyncio.wait_for(
                self.catalog.fetch_products(shop_id, first=first, after=cursor),
                timeout=self.settings.sync_timeout,
            )
            nodes.extend(page.products)
            if not page.page_info.has_next_page or not page.products:
                break
            cursor = page.page_info.end_cursor
        return nodes[:limit]

    async def push_products(self, shop_id: str, nodes: list[dict[str, Any]]) -> SyncResult:
        result = SyncResult()
        semaphore = asyncio.Semaphore(self.settings.sync_batch_concurrency)
        batch_size = self.settings.sync_batch_size

        async def push(node: dict[str, Any]) -> None:
            product_id = node.get("id")
            try:
                record = normalize_product(node).to_record()
                product_id = record["id"]
                async with semaphore:
                    await asyncio.wait_for(
                        self.backend.sync_product(shop_id, record, currency=self.settings.default_currency),
                        timeout=self.settings.sync_timeout,
                    )
            except Exception as exc:
                result.failed += 1
                result.errors.append(SyncError(product_id=product_id, error=str(exc) or type(exc).__name__))
                logger.warning("Failed to sync product %s for %s: %s", product_id, shop_id, exc)
            else:
                result.successful += 1

        for start in range(0, len(nodes), batch_size):
            await asyncio.gather(*(push(node) for node in nodes[start : start + batch_size]))
        return result

    async def get_backend_products(self, shop_id: str) -> list[dict[str, Any]]:
        response = await self.backend.get_products(shop_id)
        data = response.get("data")
        if response.get("success") and data:
            return data if isinstance(data, list) else [data]
        return []

    async def resync_product(self, shop_id: str, product_id: str) -> Any:
        node = await asyncio.wait_for(
            self.catalog.fetch_product(shop_id, product_id), timeout=self.settings.sync_timeout
        )
        if not node:
            raise ProductNotFoundError(f"Product {product_id} not found in Shopify")
        record = normalize_product(node).to_record()
        await asyncio.wait_for(
            self.backend.sync_product(shop_id, record, currency=self.settings.default_currency),
            timeout=self.settings.sync_timeout,
        )
        response = await self.backend.get_products(shop_id, record["id"])
        return response.get("data")

    def is_recent_sync(self, shop_id: str) -> bool:
        state = self.states.peek(shop_id)
        if state is None or state.last_sync is None:
            return False
        age = (self.clock() - state.last_sync).total_seconds()
        return age < self.settings.sync_freshness_window

    def get_sync_status(self, shop_id: str) -> SyncStatus:
        state = self.states.peek(shop_id)
        return SyncStatus(
            in_progress=bool(state and state.in_progress),
            last_sync=state.last_sync if state else None,
            is_recent=self.is_recent_sync(shop_id),
        )

    def clear_sync_data(self, shop_id: str) -> None:
        self.states.clear(shop_id)


async def sync_all_shops(settings: Settings | None = None) -> dict[str, int]:
    """Force a sync for every shop with a stored token; returns product counts per shop."""
    settings = settings or load_settings()
    tokens = TokenStore(create_engine_from_env(settings.database_url))
    catalog = ShopifyClient(
        tokens.get_access_token,
        api_version=settings.shopify_api_version,
        rate_limiter=ShopRateLimiter(rate=settings.shopify_requests_per_second),
        timeout=settings.request_timeout,
    )
    backend = BackendClient(settings.backend_base_url, timeout=settings.request_timeout)
    manager = ProductSyncManager(catalog, backend, settings=settings)
    counts: dict[str, int] = {}
    try:
        for shop_id in tokens.all_shops():
            try:
                counts[shop_id] = len(await manager.sync_and_fetch(shop_id, force_refresh=True))
            except Exception as exc:  # pragma: no cover - network
                logger.warning("Scheduled sync failed for %s: %s", shop_id, exc)
    finally:
        await catalog.close()
        await backend.close()
    return counts
