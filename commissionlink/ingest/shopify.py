"""Shopify Admin GraphQL catalog reader."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Callable

import httpx

from commissionlink.ingest.models import Image, PageInfo, Product, ProductPage, Variant
from commissionlink.utils.rate_limit import ShopRateLimiter
from commissionlink.utils.retry import Throttled, retry_throttled
from commissionlink.utils.urls import shop_domain

logger = logging.getLogger(__name__)

GID_TAIL_RE = re.compile(r"/(\d+)$")

PRODUCT_FIELDS = """
    id
    title
    handle
    status
    productType
    vendor
    tags
    createdAt
    updatedAt
    variants(first: 10) {
      edges {
        node {
          id
          price
          sku
          inventoryQuantity
        }
      }
    }
    images(first: 5) {
      edges {
        node {
          id
          url
          altText
        }
      }
    }
"""

PRODUCTS_QUERY = f"""
query getProducts($first: Int!, $after: String, $query: String) {{
  products(first: $first, after: $after, query: $query) {{
    edges {{
      node {{{PRODUCT_FIELDS}
      }}
    }}
    pageInfo {{
      hasNextPage
      endCursor
    }}
  }}
}}
"""

PRODUCT_QUERY = f"""
query getProduct($id: ID!) {{
  product(id: $id) {{{PRODUCT_FIELDS}
  }}
}}
"""

SHOP_CURRENCY_QUERY = """
query {
  shop {
    currencyCode
  }
}
"""


class ShopifyError(RuntimeError):
    pass


class ShopifyAuthError(ShopifyError):
    pass


class ShopifyGraphQLError(ShopifyError):
    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__(f"Shopify GraphQL errors: {json.dumps(errors)}")
        self.errors = errors


class ProductNotFoundError(ShopifyError, LookupError):
    pass


TokenProvider = Callable[[str], "str | None"]


class ShopifyClient:
    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        api_version: str = "2024-01",
        session: httpx.AsyncClient | None = None,
        rate_limiter: ShopRateLimiter | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._token_provider = token_provider
        self.api_version = api_version
        self._session = session or httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = rate_limiter or ShopRateLimiter()

    async def close(self) -> None:
        await self._session.aclose()

    async def fetch_products(
        self,
        shop_id: str,
        *,
        first: int = 250,
        after: str | None = None,
        query: str | None = None,
    ) -> ProductPage:
        data = await self.graphql(shop_id, PRODUCTS_QUERY, {"first": first, "after": after, "query": query})
        connection = (data or {}).get("products") or {}
        nodes = [edge["node"] for edge in connection.get("edges", [])]
        info = connection.get("pageInfo") or {}
        logger.info("Fetched %s products from Shopify for %s", len(nodes), shop_id)
        return ProductPage(
            products=nodes,
            page_info=PageInfo(has_next_page=bool(info.get("hasNextPage")), end_cursor=info.get("endCursor")),
        )

    async def iter_product_pages(
        self,
        shop_id: str,
        *,
        page_size: int = 250,
        limit: int | None = None,
        query: str | None = None,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield pages of product nodes until ``limit`` nodes or the last page."""
        seen = 0
        cursor = None
        while True:
            first = page_size if limit is None else min(page_size, limit - seen)
            if first <= 0:
                return
            page = await self.fetch_products(shop_id, first=first, after=cursor, query=query)
            seen += len(page.products)
            yield page.products
            if not page.page_info.has_next_page or not page.products:
                return
            cursor = page.page_info.end_cursor

    async def fetch_product(self, shop_id: str, product_id: str) -> dict[str, Any] | None:
        gid = product_id if str(product_id).startswith("gid://") else f"gid://shopify/Product/{product_id}"
        data = await self.graphql(shop_id, PRODUCT_QUERY, {"id": gid})
        return (data or {}).get("product")

    async def fetch_shop_currency(self, shop_id: str) -> str | None:
        data = await self.graphql(shop_id, SHOP_CURRENCY_QUERY)
        return ((data or {}).get("shop") or {}).get("currencyCode")

    async def graphql(self, shop_id: str, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await asyncio.get_running_loop().run_in_executor(None, self._token_provider, shop_id)
        if not token:
            raise ShopifyAuthError(f"No Shopify access token for {shop_id}")
        domain = shop_domain(shop_id)
        url = f"https://{domain}/admin/api/{self.api_version}/graphql.json"
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        headers = {"X-Shopify-Access-Token": token, "Content-Type": "application/json"}
        body = await retry_throttled(self._post)(domain, url, payload, headers)
        errors = body.get("errors")
        if errors:
            raise ShopifyGraphQLError(errors if isinstance(errors, list) else [{"message": str(errors)}])
        return body.get("data") or {}

    async def _post(self, domain: str, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        async with self._rate_limiter.slot(domain):
            response = await self._session.post(url, json=payload, headers=headers)
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise Throttled(f"Shopify throttled {domain}", retry_after=float(retry_after) if retry_after else None)
        if response.status_code == 401:
            raise ShopifyAuthError(f"Shopify rejected the access token for {domain}")
        response.raise_for_status()
        body = response.json()
        if _is_throttled(body.get("errors")):
            raise Throttled(f"Shopify throttled {domain}")
        return body


def _is_throttled(errors: Any) -> bool:
    if not isinstance(errors, list):
        return False
    return any((error.get("extensions") or {}).get("code") == "THROTTLED" for error in errors if isinstance(error, dict))


def extract_shopify_id(gid: Any) -> str | None:
    """``gid://shopify/Product/123`` -> ``"123"``; anything else is returned as a string."""
    if gid in (None, ""):
        return None
    match = GID_TAIL_RE.search(str(gid))
    return match.group(1) if match else str(gid)


def _edges(connection: Any) -> list[dict[str, Any]]:
    if not connection:
        return []
    return [edge["node"] for edge in connection.get("edges", [])]


def normalize_product(node: dict[str, Any]) -> Product:
    """Map a GraphQL product node to the backend record model."""
    variants = [
        Variant(
            id=extract_shopify_id(variant.get("id")),
            price=float(variant.get("price") or 0),
            sku=variant.get("sku") or None,
            inventory_quantity=variant.get("inventoryQuantity") or 0,
        )
        for variant in _edges(node.get("variants"))
    ]
    images = [
        Image(id=extract_shopify_id(image.get("id")), url=image.get("url"), alt_text=image.get("altText"))
        for image in _edges(node.get("images"))
    ]
    return Product(
        id=extract_shopify_id(node["id"]),
        title=node.get("title") or "",
        handle=node.get("handle"),
        status=node.get("status"),
        product_type=node.get("productType"),
        vendor=node.get("vendor"),
        tags=list(node.get("tags") or []),
        variants=variants,
        images=images,
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
    )
