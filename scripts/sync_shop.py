"""Force a product sync for one shop and print a summary."""

from __future__ import annotations

import asyncio
import os

from commissionlink.config import load_settings
from commissionlink.db.session import create_engine_from_env
from commissionlink.db.tokens import TokenStore
from commissionlink.ingest.backend import BackendClient
from commissionlink.ingest.shopify import ShopifyClient
from commissionlink.jobs.product_sync import ProductSyncManager
from commissionlink.logic.commission import get_commission_stats


async def main() -> None:
    settings = load_settings()
    shop_id = os.environ.get("SHOP_ID")
    if not shop_id:
        raise SystemExit("SHOP_ID env var required")
    tokens = TokenStore(create_engine_from_env(settings.database_url))
    catalog = ShopifyClient(tokens.get_access_token, api_version=settings.shopify_api_version)
    backend = BackendClient(settings.backend_base_url, timeout=settings.request_timeout)
    try:
        manager = ProductSyncManager(catalog, backend, settings=settings)
        products = await manager.sync_and_fetch(shop_id, force_refresh=True)
    finally:
        await catalog.close()
        await backend.close()
    stats = get_commission_stats(product.get("data") or product for product in products)
    print(f"Synced {len(products)} products for {shop_id}")
    print(f"Categorized: {stats['categorized']}, uncategorized: {stats['uncategorized']}")
    print(f"Total commission value: {stats['total_commission_value']:.2f}")


if __name__ == "__main__":
    asyncio.run(main())
