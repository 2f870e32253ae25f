"""Order webhook attribution and sale recording."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

import httpx

from commissionlink.config import Settings
from commissionlink.ingest.backend import BackendClient, BackendError
from commissionlink.ingest.models import Attribution, Click
from commissionlink.ingest.shopify import ShopifyClient, ShopifyError
from commissionlink.logic.attribution import (
    line_item_descriptor,
    match_click,
    order_product_ids,
    status_transitions,
    total_refunded,
    tracking_attribute,
)
from commissionlink.logic.commission import CommissionCalculator, default_calculator, round_money
from commissionlink.utils.dates import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)


class SalesTracker:
    def __init__(
        self,
        backend: BackendClient,
        *,
        settings: Settings | None = None,
        calculator: CommissionCalculator | None = None,
        catalog: ShopifyClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backend = backend
        self.settings = settings or Settings()
        self.calculator = calculator or default_calculator()
        self.catalog = catalog
        self.clock = clock

    async def process_order(self, order: Mapping[str, Any], attribution: Attribution | None = None) -> bool:
        """Record commission for every line item; ``False`` when no affiliate is found."""
        attribution = attribution or await self.find_attribution(order)
        if attribution is None:
            logger.info("No affiliate attribution for order %s", order.get("id"))
            return False

        currency = await self._resolve_currency(order)
        line_items = list(order.get("line_items") or [])
        outcomes = await asyncio.gather(
            *(self.record_line_item(order, item, attribution, currency) for item in line_items),
            return_exceptions=True,
        )
        for item, outcome in zip(line_items, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Failed to record sale for order %s line item %s: %s", order.get("id"), item.get("id"), outcome
                )
        logger.info(
            "Order %s attributed to track %s (%s)", order.get("id"), attribution.track_id, attribution.source
        )
        return True

    async def find_attribution(self, order: Mapping[str, Any]) -> Attribution | None:
        shop_id = order.get("shop_id")
        track_id = tracking_attribute(order, self.settings.track_attribute_name)
        if track_id:
            return Attribution(
                track_id=track_id,
                shop_id=shop_id,
                affiliate_id=await self._smartlink_affiliate(track_id),
                source="note_attribute",
            )

        if not shop_id:
            return None
        ordered_at = parse_timestamp(order.get("created_at")) or self.clock()
        clicks = await self.recent_clicks(shop_id, until=ordered_at)
        click = match_click(
            clicks,
            ordered_at=ordered_at,
            product_ids=order_product_ids(order),
            window=timedelta(hours=self.settings.click_attribution_window_hours),
        )
        if click is None:
            return None
        return Attribution(
            track_id=click.track_id,
            shop_id=click.shop_id or shop_id,
            affiliate_id=click.affiliate_id,
            source="click_match",
            click=click,
        )

    async def recent_clicks(self, shop_id: str, *, until: datetime | None = None) -> list[Click]:
        until = until or self.clock()
        since = until - timedelta(hours=self.settings.click_lookback_hours)
        response = await self.backend.get_recent_clicks(shop_id, since=to_iso(since), until=to_iso(until))
        clicks = []
        for record in response.get("data") or []:
            try:
                clicks.append(Click.from_record(record))
            except ValueError as exc:
                logger.warning("Skipping malformed click for %s: %s", shop_id, exc)
        return clicks

    async def record_line_item(
        self,
        order: Mapping[str, Any],
        item: Mapping[str, Any],
        attribution: Attribution,
        currency: str,
    ) -> dict[str, Any]:
        commission = self.calculator.resolve_value(line_item_descriptor(item))
        quantity = item.get("quantity")
        quantity = 1 if quantity is None else int(quantity)
        product_id = item.get("product_id")
        variant_id = item.get("variant_id")
        customer = order.get("customer") or {}
        sale = {
            "shopId": attribution.shop_id,
            "orderId": str(order.get("id")),
            "orderNumber": order.get("order_number") or order.get("name"),
            "productId": str(product_id) if product_id is not None else None,
            "variantId": str(variant_id) if variant_id is not None else None,
            "productTitle": item.get("title") or item.get("name"),
            "quantity": quantity,
            "price": commission.price,
            "totalAmount": round_money(commission.price * quantity),
            "commissionRate": commission.rate,
            "commissionValue": round_money(commission.value * quantity),
            "commissionCategory": commission.category,
            "commissionSubcategory": commission.subcategory,
            "isDefaultRate": commission.is_default,
            "currency": currency,
            "customerEmail": customer.get("email") or order.get("email"),
            "orderDate": order.get("created_at"),
            "status": order.get("financial_status") or "pending",
            "trackingData": {
                "trackId": attribution.track_id,
                "affiliateId": attribution.affiliate_id,
                "referrer": attribution.click.referrer if attribution.click else None,
            },
        }
        result = await self.backend.record_sale(sale)
        if result.get("success"):
            logger.info(
                "Sale recorded: %s - %.2f commission (%s%% %s)",
                sale["productTitle"],
                sale["commissionValue"],
                commission.rate,
                "default" if commission.is_default else commission.category,
            )
        else:
            logger.warning("Backend did not record sale for order %s: %s", sale["orderId"], result)
        return result

    async def handle_status_change(self, order: Mapping[str, Any], from_status: str, to_status: str) -> None:
        update: dict[str, Any] = {
            "shopId": order.get("shop_id"),
            "orderId": order.get("id"),
            "fromStatus": from_status,
            "toStatus": to_status,
            "orderTotal": float(order.get("total_price") or 0),
        }
        if order.get("refunds"):
            update["refundAmount"] = total_refunded(order)
            update["refundDate"] = to_iso(self.clock())
        await self.backend.update_sale_status(update)

    async def process_order_update(self, order: Mapping[str, Any]) -> list[tuple[str, str]]:
        transitions = status_transitions(order)
        for from_status, to_status in transitions:
            await self.handle_status_change(order, from_status, to_status)
        return transitions

    async def _smartlink_affiliate(self, track_id: str) -> str | None:
        try:
            response = await self.backend.get_smartlink_data(track_id)
        except (BackendError, httpx.HTTPError) as exc:
            logger.warning("Smart link lookup failed for %s: %s", track_id, exc)
            return None
        if not response.get("success"):
            return None
        affiliate_id = (response.get("data") or {}).get("affiliateId")
        return str(affiliate_id) if affiliate_id is not None else None

    async def _resolve_currency(self, order: Mapping[str, Any]) -> str:
        currency = order.get("currency") or order.get("presentment_currency")
        if currency:
            return currency
        shop_id = order.get("shop_id")
        if self.catalog is not None and shop_id:
            try:
                currency = await self.catalog.fetch_shop_currency(shop_id)
            except (ShopifyError, httpx.HTTPError) as exc:
                logger.warning("Falling back to default currency for %s: %s", shop_id, exc)
        return currency or self.settings.default_currency
