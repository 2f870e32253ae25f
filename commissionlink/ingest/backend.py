"""Client for the commission backend (products, commissions, sales, clicks)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self.session.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        response = await self.session.request(method, url, json=json, params=params)
        if response.is_error:
            logger.warning("Backend request failed: %s %s -> %s", method, endpoint, response.status_code)
            raise BackendError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return {}
        return response.json()

    # Shops

    async def register_shop(self, shop_id: str, domain: str, name: str) -> dict[str, Any]:
        return await self.request(
            "POST",
            "/shops/register",
            json={"shopId": shop_id, "shopUrl": domain, "shopName": name, "platform": "shopify"},
        )

    async def get_shop(self, shop_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/shops/{shop_id}")

    async def store_access_token(
        self, shop_id: str, access_token: str, *, domain: str | None = None, name: str | None = None
    ) -> dict[str, Any]:
        return await self.request(
            "POST",
            "/shops/store-token",
            json={
                "shopId": shop_id,
                "accessToken": access_token,
                "shopUrl": domain or shop_id,
                "shopName": name or "Shopify Store",
            },
        )

    # Products

    async def sync_product(self, shop_id: str, record: Mapping[str, Any], *, currency: str = "USD") -> dict[str, Any]:
        variants = record.get("variants") or []
        return await self.request(
            "POST",
            "/products/sync",
            json={
                "shopId": shop_id,
                "productId": record.get("id"),
                "name": record.get("title"),
                "price": variants[0].get("price", 0) if variants else 0,
                "currency": currency,
                "status": record.get("status"),
                "data": dict(record),
                "lastModified": record.get("updatedAt"),
                "createdAt": record.get("createdAt"),
            },
        )

    async def get_products(self, shop_id: str, product_id: str | None = None) -> dict[str, Any]:
        params = {"shopId": shop_id}
        if product_id:
            params["productId"] = product_id
        return await self.request("GET", "/products", params=params)

    async def delete_product(self, shop_id: str, product_id: str) -> dict[str, Any]:
        return await self.request("DELETE", "/products/delete", json={"shopId": shop_id, "productId": product_id})

    # Commissions

    async def sync_commission(self, shop_id: str, record: Mapping[str, Any]) -> dict[str, Any]:
        return await self.request(
            "POST",
            "/commissions/sync",
            json={
                "shopId": shop_id,
                "productId": record.get("productId") or record.get("referenceId"),
                "commissionValue": record.get("commissionValue"),
                "commissionRate": record.get("commissionRate"),
                "commissionType": record.get("commissionType") or "percentage",
                "currency": record.get("currency"),
                "status": record.get("status") or "active",
                "type": record.get("type") or "product",
                "referenceId": record.get("referenceId"),
                "applyToProducts": bool(record.get("applyToProducts", False)),
            },
        )

    async def get_commissions(self, shop_id: str, filters: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("GET", "/commissions", params={"shopId": shop_id, **(filters or {})})

    async def delete_commission(self, shop_id: str, product_id: str, kind: str = "product") -> dict[str, Any]:
        return await self.request(
            "DELETE", "/commissions", json={"shopId": shop_id, "productId": product_id, "type": kind}
        )

    # Sales

    async def record_sale(self, sale: Mapping[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/sales/record", json=dict(sale))

    async def update_sale_status(self, update: Mapping[str, Any]) -> dict[str, Any]:
        return await self.request("PUT", "/sales/update", json=dict(update))

    # Smart links and clicks

    async def create_smart_link(self, link: Mapping[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/smartlinks/create", json=dict(link))

    async def get_smartlink_data(self, track_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/smartlinks/track/{track_id}")

    async def get_smart_link_performance(
        self, link_id: str, *, start_date: str | None = None, end_date: str | None = None
    ) -> dict[str, Any]:
        params = {"linkId": link_id}
        if start_date:
            params["startDate"] = start_date
        if end_date:
            params["endDate"] = end_date
        return await self.request("GET", "/smartlinks/performance", params=params)

    async def get_affiliate_smart_links(
        self, affiliate_id: str, filters: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.request(
            "GET", "/smartlinks/affiliate", params={"affiliateId": affiliate_id, **(filters or {})}
        )

    async def update_smart_link_status(self, link_id: str, status: str) -> dict[str, Any]:
        return await self.request("PUT", f"/smartlinks/{link_id}/status", json={"status": status})

    async def delete_smart_link(self, link_id: str) -> dict[str, Any]:
        return await self.request("DELETE", f"/smartlinks/{link_id}")

    async def track_click(self, click: Mapping[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/track-click", json=dict(click))

    async def get_recent_clicks(self, shop_id: str, *, since: str, until: str | None = None) -> dict[str, Any]:
        params = {"shopId": shop_id, "since": since}
        if until:
            params["until"] = until
        return await self.request("GET", "/clicks", params=params)

    async def health(self) -> dict[str, Any]:
        return await self.request("GET", "/health")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"
