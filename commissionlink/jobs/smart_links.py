"""Smart link creation and click handling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

import httpx

from commissionlink.config import Settings
from commissionlink.ingest.backend import BackendClient, BackendError
from commissionlink.ingest.models import Click
from commissionlink.utils.dates import utc_now
from commissionlink.utils.urls import (
    build_tracking_url,
    client_ip,
    is_shop_url,
    product_url,
    shop_domain,
    with_tracking_params,
)

logger = logging.getLogger(__name__)

FALLBACK_URL = "https://www.shopify.com"
LINK_STATUSES = ("active", "inactive")
PERFORMANCE_FIELDS = (
    "totalClicks",
    "uniqueClicks",
    "conversions",
    "conversionRate",
    "totalEarnings",
    "averageOrderValue",
    "clicksByDate",
    "conversionsByDate",
)
AFFILIATE_LINK_FIELDS = (
    "id",
    "trackId",
    "url",
    "productId",
    "productName",
    "shopId",
    "shopName",
    "totalClicks",
    "totalEarnings",
    "conversionRate",
    "isActive",
    "createdAt",
    "expiresAt",
)


def fallback_url(shop_hint: str | None) -> str:
    return f"https://{shop_domain(shop_hint)}" if shop_hint else FALLBACK_URL


@dataclass(slots=True)
class ClickOutcome:
    redirect_url: str
    click: Click | None = None


class SmartLinkService:
    def __init__(
        self,
        backend: BackendClient,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backend = backend
        self.settings = settings or Settings()
        self.clock = clock

    async def generate_smart_link(
        self,
        shop_id: str,
        product_id: str | None,
        affiliate_id: str,
        *,
        link_type: str = "product",
        expires_at: str | None = None,
        tracking_params: Mapping[str, Any] | None = None,
        utm: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self.backend.create_smart_link(
            {
                "shopId": shop_id,
                "productId": product_id,
                "affiliateId": affiliate_id,
                "linkType": link_type,
                "expiresAt": expires_at,
                "trackingParams": dict(tracking_params or {}),
            }
        )
        if not response.get("success"):
            return {"success": False, "error": response.get("error")}
        data = response.get("data") or {}
        track_id = data["trackId"]
        return {
            "success": True,
            "smartLink": {
                "id": data.get("id"),
                "trackId": track_id,
                "url": build_tracking_url(
                    self.settings.app_url, shop_id, product_id, track_id, params=tracking_params, utm=utm
                ),
                "shortUrl": data.get("shortUrl"),
                "affiliateId": affiliate_id,
                "productId": product_id,
                "shopId": shop_id,
                "createdAt": data.get("createdAt"),
                "expiresAt": data.get("expiresAt"),
                "isActive": data.get("isActive"),
            },
        }

    async def handle_click(
        self,
        track_id: str,
        *,
        headers: Mapping[str, str],
        remote_addr: str | None = None,
        shop_hint: str | None = None,
        product_hint: str | None = None,
        redirect_to: str | None = None,
    ) -> ClickOutcome:
        """Record a click for ``track_id`` and work out where to send the visitor."""
        link = await self.backend.get_smartlink_data(track_id)
        if not link.get("success"):
            logger.warning("Smart link not found: %s", track_id)
            return ClickOutcome(redirect_url=fallback_url(shop_hint))

        data = link.get("data") or {}
        shop_id = str(data.get("shopId") or shop_hint or "")
        product_id = data.get("productId") or product_hint
        product_id = str(product_id) if product_id else None
        affiliate_id = data.get("affiliateId")
        affiliate_id = str(affiliate_id) if affiliate_id is not None else None

        clicked_at = self.clock()
        click = Click(
            track_id=track_id,
            shop_id=shop_id,
            product_id=product_id,
            affiliate_id=affiliate_id,
            clicked_at=clicked_at,
            expires_at=clicked_at + timedelta(hours=self.settings.click_expiry_hours),
            ip_address=client_ip(headers, remote_addr),
            user_agent=headers.get("user-agent", ""),
            referrer=headers.get("referer", ""),
        )
        device_info = {
            "userAgent": headers.get("user-agent", ""),
            "acceptLanguage": headers.get("accept-language", ""),
            "referer": headers.get("referer", ""),
        }
        try:
            await self.backend.track_click(click.to_record(device_info))
        except (BackendError, httpx.HTTPError) as exc:
            logger.error("Failed to record click for %s: %s", track_id, exc)

        if redirect_to and not is_shop_url(redirect_to, shop_id):
            logger.warning("Ignoring off-shop redirect for smart link %s: %s", track_id, redirect_to)
            redirect_to = None
        if redirect_to:
            redirect_url = redirect_to
        elif product_id:
            redirect_url = product_url(shop_id, data.get("productHandle") or product_id)
        else:
            redirect_url = product_url(shop_id, None)
        if product_id and "/products/" in redirect_url:
            redirect_url = with_tracking_params(
                redirect_url, track_id=track_id, affiliate_id=affiliate_id, product_id=product_id
            )
        logger.info("Redirecting smart link %s for shop %s to %s", track_id, shop_id, redirect_url)
        return ClickOutcome(redirect_url=redirect_url, click=click)

    async def get_smart_link_performance(
        self, link_id: str, *, start_date: str | None = None, end_date: str | None = None
    ) -> dict[str, Any]:
        response = await self.backend.get_smart_link_performance(link_id, start_date=start_date, end_date=end_date)
        if not response.get("success"):
            return {"success": False, "error": response.get("error")}
        data = response.get("data") or {}
        return {
            "success": True,
            "data": {
                "linkId": link_id,
                **{field: data.get(field) for field in PERFORMANCE_FIELDS},
            },
        }

    async def get_affiliate_smart_links(
        self, affiliate_id: str, filters: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        response = await self.backend.get_affiliate_smart_links(affiliate_id, filters)
        if not response.get("success"):
            return {"success": False, "error": response.get("error")}
        return {
            "success": True,
            "data": [
                {field: link.get(field) for field in AFFILIATE_LINK_FIELDS}
                for link in response.get("data") or []
            ],
        }

    async def update_smart_link_status(self, link_id: str, status: str) -> dict[str, Any]:
        if status not in LINK_STATUSES:
            raise ValueError(f"Unknown smart link status: {status}")
        logger.info("Setting smart link %s status to %s", link_id, status)
        return await self.backend.update_smart_link_status(link_id, status)

    async def delete_smart_link(self, link_id: str) -> dict[str, Any]:
        logger.info("Deleting smart link %s", link_id)
        return await self.backend.delete_smart_link(link_id)
