"""Store a shop's Shopify access token locally and register it with the backend."""

from __future__ import annotations

import asyncio
import os

from commissionlink.config import load_settings
from commissionlink.db.session import create_engine_from_env
from commissionlink.db.tokens import TokenStore
from commissionlink.ingest.backend import BackendClient
from commissionlink.utils.urls import shop_domain


async def main() -> None:
    settings = load_settings()
    shop_id = os.environ.get("SHOP_ID")
    access_token = os.environ.get("SHOPIFY_ACCESS_TOKEN")
    if not shop_id or not access_token:
        raise SystemExit("SHOP_ID and SHOPIFY_ACCESS_TOKEN env vars required")
    TokenStore(create_engine_from_env(settings.database_url)).store_access_token(shop_id, access_token)
    backend = BackendClient(settings.backend_base_url, timeout=settings.request_timeout)
    try:
        await backend.store_access_token(shop_id, access_token, domain=shop_domain(shop_id))
    finally:
        await backend.close()
    print("Stored access token for", shop_id)


if __name__ == "__main__":
    asyncio.run(main())
