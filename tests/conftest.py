from __future__ import annotations

import asyncio
from typing import Any

import pendulum
import pytest
from sqlalchemy import create_engine

from commissionlink.config import Settings
from commissionlink.db.tokens import TokenStore
from commissionlink.ingest.backend import BackendError
from commissionlink.ingest.models import PageInfo, ProductPage

ORDER_TIME = pendulum.datetime(2024, 3, 1, 12, 0, tz="UTC")


def make_node(
    product_id: int,
    title: str = "Thing",
    *,
    product_type: str = "",
    tags: list[str] | None = None,
    vendor: str = "",
    price: str = "10.00",
) -> dict[str, Any]:
    return {
        "id": f"gid://shopify/Product/{product_id}",
        "title": title,
        "handle": title.lower().replace(" ", "-"),
        "status": "ACTIVE",
        "productType": product_type,
        "vendor": vendor,
        "tags": tags or [],
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T00:00:00Z",
        "variants": {
            "edges": [
                {
                    "node": {
                        "id": f"gid://shopify/ProductVariant/{product_id}0",
                        "price": price,
                        "sku": f"SKU-{product_id}",
                        "inventoryQuantity": 3,
                    }
                }
            ]
        },
        "images": {"edges": []},
    }


class FakeCatalog:
    def __init__(self, nodes: list[dict[str, Any]] | None = None, *, currency: str = "USD") -> None:
        self.nodes = list(nodes or [])
        self.currency = currency
        self.calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def fetch_products(
        self, shop_id: str, *, first: int, after: str | None = None, query: str | None = None
    ) -> ProductPage:
        self.calls.append({"shop_id": shop_id, "first": first, "after": after, "query": query})
        if self.gate is not None:
            await self.gate.wait()
        start = int(after or 0)
        page = self.nodes[start : start + first]
        end = start + len(page)
        return ProductPage(
            products=page,
            page_info=PageInfo(has_next_page=end < len(self.nodes), end_cursor=str(end)),
        )

    async def iter_product_pages(self, shop_id: str, *, page_size: int = 250, limit: int | None = None, query=None):
        page = await self.fetch_products(shop_id, first=limit or page_size, query=query)
        yield page.products

    async def fetch_product(self, shop_id: str, product_id: str) -> dict[str, Any] | None:
        for node in self.nodes:
            if node["id"].endswith(f"/{product_id}"):
                return node
        return None

    async def fetch_shop_currency(self, shop_id: str) -> str | None:
        return self.currency


class FakeBackend:
    def __init__(self) -> None:
        self.products: dict[str, dict[str, dict[str, Any]]] = {}
        self.synced: list[dict[str, Any]] = []
        self.fail_products: set[str] = set()
        self.commissions: list[dict[str, Any]] = []
        self.deleted_commissions: list[tuple[str, str, str]] = []
        self.sales: list[dict[str, Any]] = []
        self.sale_updates: list[dict[str, Any]] = []
        self.links: dict[str, dict[str, Any]] = {}
        self.clicks: list[dict[str, Any]] = []
        self.recent: list[dict[str, Any]] = []
        self.performance_queries: list[tuple[str, str | None, str | None]] = []
        self.fail_sales_for: set[str] = set()

    async def sync_product(self, shop_id: str, record: dict[str, Any], *, currency: str = "USD") -> dict[str, Any]:
        if record["id"] in self.fail_products:
            raise BackendError("boom", status_code=500)
        self.synced.append({"shopId": shop_id, "record": record, "currency": currency})
        self.products.setdefault(shop_id, {})[record["id"]] = {"productId": record["id"], "data": record}
        return {"success": True}

    async def get_products(self, shop_id: str, product_id: str | None = None) -> dict[str, Any]:
        products = self.products.get(shop_id, {})
        if product_id:
            return {"success": True, "data": products.get(product_id)}
        return {"success": True, "data": list(products.values())}

    async def sync_commission(self, shop_id: str, record: dict[str, Any]) -> dict[str, Any]:
        self.commissions.append({"shopId": shop_id, **record})
        return {"success": True}

    async def get_commissions(self, shop_id: str, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        filters = filters or {}
        data = [
            record
            for record in self.commissions
            if record["shopId"] == shop_id and all(record.get(key) == value for key, value in filters.items())
        ]
        return {"success": True, "data": data}

    async def delete_commission(self, shop_id: str, product_id: str, kind: str = "product") -> dict[str, Any]:
        self.deleted_commissions.append((shop_id, product_id, kind))
        return {"success": True}

    async def record_sale(self, sale: dict[str, Any]) -> dict[str, Any]:
        if sale["productId"] in self.fail_sales_for:
            raise BackendError("sale rejected", status_code=422)
        self.sales.append(sale)
        return {"success": True}

    async def update_sale_status(self, update: dict[str, Any]) -> dict[str, Any]:
        self.sale_updates.append(update)
        return {"success": True}

    async def create_smart_link(self, link: dict[str, Any]) -> dict[str, Any]:
        track_id = f"trk-{len(self.links) + 1}"
        self.links[track_id] = {**link, "trackId": track_id}
        return {"success": True, "data": {"id": len(self.links), "trackId": track_id, "isActive": True}}

    async def get_smartlink_data(self, track_id: str) -> dict[str, Any]:
        link = self.links.get(track_id)
        if link is None:
            return {"success": False, "error": "Not found"}
        return {"success": True, "data": link}

    async def get_smart_link_performance(
        self, link_id: str, *, start_date: str | None = None, end_date: str | None = None
    ) -> dict[str, Any]:
        self.performance_queries.append((link_id, start_date, end_date))
        clicks = [click for click in self.clicks if click.get("track_id") == link_id]
        return {"success": True, "data": {"totalClicks": len(clicks), "conversions": 0, "internalScore": 9}}

    async def get_affiliate_smart_links(self, affiliate_id: str, filters: dict[str, Any] | None = None):
        data = [
            {**link, "id": track_id, "secret": "x"}
            for track_id, link in self.links.items()
            if str(link.get("affiliateId")) == affiliate_id
        ]
        return {"success": True, "data": data}

    async def update_smart_link_status(self, link_id: str, status: str) -> dict[str, Any]:
        if link_id not in self.links:
            return {"success": False, "error": "Not found"}
        self.links[link_id]["isActive"] = status == "active"
        return {"success": True}

    async def delete_smart_link(self, link_id: str) -> dict[str, Any]:
        if self.links.pop(link_id, None) is None:
            return {"success": False, "error": "Not found"}
        return {"success": True}

    async def track_click(self, click: dict[str, Any]) -> dict[str, Any]:
        self.clicks.append(click)
        return {"success": True}

    async def get_recent_clicks(self, shop_id: str, *, since: str, until: str | None = None) -> dict[str, Any]:
        return {"success": True, "data": list(self.recent)}


@pytest.fixture()
def settings():
    return Settings(backend_base_url="https://backend.test/api", app_url="https://app.test", signing_secret="secret")


@pytest.fixture()
def catalog():
    return FakeCatalog()


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def engine():
    engine = create_engine("sqlite:///:memory:", future=True)
    yield engine
    engine.dispose()


@pytest.fixture()
def token_store(engine):
    return TokenStore(engine)
