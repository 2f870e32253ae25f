"""FastAPI application for product sync, commissions, smart links and order webhooks."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from commissionlink.config import Settings, load_settings
from commissionlink.db.session import create_engine_from_env
from commissionlink.db.tokens import TokenStore
from commissionlink.ingest.backend import BackendClient, BackendError
from commissionlink.ingest.shopify import ProductNotFoundError, ShopifyAuthError, ShopifyClient, ShopifyError
from commissionlink.jobs.commissions import CommissionService
from commissionlink.jobs.product_sync import ProductSyncManager
from commissionlink.jobs.sales import SalesTracker
from commissionlink.jobs.smart_links import SmartLinkService, fallback_url
from commissionlink.logic.commission import CommissionCalculator, default_calculator
from commissionlink.utils.dates import to_iso
from commissionlink.utils.rate_limit import ShopRateLimiter
from commissionlink.utils.urls import TRACKING_COOKIE, shop_id_from_domain, sign_tracking

logger = logging.getLogger(__name__)

UPSTREAM_ERRORS = (ShopifyError, BackendError, httpx.HTTPError, asyncio.TimeoutError)


@lru_cache
def get_settings() -> Settings:
    return load_settings()


@lru_cache
def get_token_store() -> TokenStore:
    return TokenStore(create_engine_from_env(get_settings().database_url))


@lru_cache
def get_shopify_client() -> ShopifyClient:
    settings = get_settings()
    return ShopifyClient(
        get_token_store().get_access_token,
        api_version=settings.shopify_api_version,
        rate_limiter=ShopRateLimiter(rate=settings.shopify_requests_per_second),
        timeout=settings.request_timeout,
    )


@lru_cache
def get_backend_client() -> BackendClient:
    settings = get_settings()
    return BackendClient(settings.backend_base_url, timeout=settings.request_timeout)


@lru_cache
def get_sync_manager() -> ProductSyncManager:
    return ProductSyncManager(get_shopify_client(), get_backend_client(), settings=get_settings())


@lru_cache
def get_sales_tracker() -> SalesTracker:
    return SalesTracker(get_backend_client(), settings=get_settings(), catalog=get_shopify_client())


@lru_cache
def get_smart_links() -> SmartLinkService:
    return SmartLinkService(get_backend_client(), settings=get_settings())


@lru_cache
def get_commission_service() -> CommissionService:
    return CommissionService(get_backend_client(), get_shopify_client())


def get_calculator() -> CommissionCalculator:
    return default_calculator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_shopify_client.cache_info().currsize:
        await get_shopify_client().close()
    if get_backend_client.cache_info().currsize:
        await get_backend_client().close()


app = FastAPI(title="CommissionLink API", lifespan=lifespan)


class ResolveRequest(BaseModel):
    product: dict[str, Any]
    price: float | None = None


class WebhookResponse(BaseModel):
    success: bool
    attributed: bool = False


class OrderUpdateResponse(BaseModel):
    success: bool
    updated: bool = False


def _upstream_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ShopifyAuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ProductNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc) or type(exc).__name__)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/products/sync")
async def sync_products(
    shop: str = Query(...),
    force: bool = False,
    limit: int | None = Query(None, gt=0),
    manager: ProductSyncManager = Depends(get_sync_manager),
) -> dict[str, Any]:
    try:
        products = await manager.sync_and_fetch(shop, force_refresh=force, limit=limit)
    except UPSTREAM_ERRORS as exc:
        raise _upstream_error(exc) from exc
    status = manager.get_sync_status(shop)
    return {
        "success": True,
        "products": products,
        "count": len(products),
        "lastSync": to_iso(status.last_sync) if status.last_sync else None,
    }


@app.get("/products/sync/status")
async def sync_status(shop: str = Query(...), manager: ProductSyncManager = Depends(get_sync_manager)) -> dict[str, Any]:
    status = manager.get_sync_status(shop)
    return {
        "inProgress": status.in_progress,
        "lastSync": to_iso(status.last_sync) if status.last_sync else None,
        "isRecent": status.is_recent,
    }


@app.post("/products/{product_id}/resync")
async def resync_product(
    product_id: str,
    shop: str = Query(...),
    manager: ProductSyncManager = Depends(get_sync_manager),
) -> dict[str, Any]:
    try:
        product = await manager.resync_product(shop, product_id)
    except UPSTREAM_ERRORS as exc:
        raise _upstream_error(exc) from exc
    return {"success": True, "product": product}


@app.get("/commissions/categories")
async def commission_categories(calculator: CommissionCalculator = Depends(get_calculator)) -> list[dict[str, Any]]:
    return [
        {"category": entry.category, "subcategory": entry.subcategory, "rate": entry.rate}
        for entry in calculator.get_all_categories()
    ]


@app.post("/commissions/resolve")
async def resolve_commission(
    payload: ResolveRequest, calculator: CommissionCalculator = Depends(get_calculator)
) -> dict[str, Any]:
    return calculator.resolve_value(payload.product, payload.price).as_dict()


@app.get("/commissions/overview")
async def commission_overview(
    shop: str = Query(...), service: CommissionService = Depends(get_commission_service)
) -> dict[str, Any]:
    try:
        return await service.overview(shop)
    except UPSTREAM_ERRORS as exc:
        raise _upstream_error(exc) from exc


@app.get("/track/{track_id}")
async def track_click(
    track_id: str,
    request: Request,
    shop: str | None = None,
    product: str | None = None,
    redirect_to: str | None = None,
    settings: Settings = Depends(get_settings),
    links: SmartLinkService = Depends(get_smart_links),
) -> RedirectResponse:
    try:
        outcome = await links.handle_click(
            track_id,
            headers=request.headers,
            remote_addr=request.client.host if request.client else None,
            shop_hint=shop,
            product_hint=product,
            redirect_to=redirect_to,
        )
    except (BackendError, httpx.HTTPError) as exc:
        logger.error("Error processing smart link click %s: %s", track_id, exc)
        return RedirectResponse(fallback_url(shop), status_code=302)

    response = RedirectResponse(outcome.redirect_url, status_code=302)
    if outcome.click is not None:
        click = outcome.click
        token = sign_tracking(
            {
                "trackId": click.track_id,
                "affiliateId": click.affiliate_id,
                "productId": click.product_id,
                "shopId": click.shop_id,
                "timestamp": to_iso(click.clicked_at),
            },
            settings.signing_secret,
        )
        response.set_cookie(
            TRACKING_COOKIE,
            token,
            max_age=settings.click_expiry_hours * 3600,
            httponly=True,
            samesite="lax",
        )
    return response


def _webhook_order(payload: dict[str, Any], shop_domain: str | None) -> dict[str, Any]:
    shop_id = shop_id_from_domain(shop_domain)
    if not shop_id:
        logger.error("Shop ID not found in webhook")
        raise HTTPException(status_code=400, detail="Shop ID required")
    return {**payload, "shop_id": shop_id}


@app.post("/webhooks/orders/created", response_model=WebhookResponse)
async def order_created(
    payload: dict[str, Any],
    x_shopify_shop_domain: str | None = Header(None),
    tracker: SalesTracker = Depends(get_sales_tracker),
) -> WebhookResponse:
    order = _webhook_order(payload, x_shopify_shop_domain)
    logger.info("Order created webhook received: %s", order.get("id"))
    return await _process_order(order, tracker)


@app.post("/webhooks/orders/paid", response_model=WebhookResponse)
async def order_paid(
    payload: dict[str, Any],
    x_shopify_shop_domain: str | None = Header(None),
    tracker: SalesTracker = Depends(get_sales_tracker),
) -> WebhookResponse:
    order = _webhook_order(payload, x_shopify_shop_domain)
    logger.info("Order paid webhook received: %s", order.get("id"))
    return await _process_order(order, tracker)


@app.post("/webhooks/orders/updated", response_model=OrderUpdateResponse)
async def order_updated(
    payload: dict[str, Any],
    x_shopify_shop_domain: str | None = Header(None),
    tracker: SalesTracker = Depends(get_sales_tracker),
) -> OrderUpdateResponse:
    order = _webhook_order(payload, x_shopify_shop_domain)
    logger.info("Order updated webhook received: %s", order.get("id"))
    try:
        transitions = await tracker.process_order_update(order)
    except UPSTREAM_ERRORS:
        logger.exception("Error processing order update webhook for %s", order.get("id"))
        return OrderUpdateResponse(success=True)
    return OrderUpdateResponse(success=True, updated=bool(transitions))


async def _process_order(order: dict[str, Any], tracker: SalesTracker) -> WebhookResponse:
    try:
        attributed = await tracker.process_order(order)
    except UPSTREAM_ERRORS:
        logger.exception("Error processing order webhook for %s", order.get("id"))
        return WebhookResponse(success=True)
    return WebhookResponse(success=True, attributed=attributed)

