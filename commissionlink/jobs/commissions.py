"""Explicit per-product and per-category commission records."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from commissionlink.ingest.backend import BackendClient
from commissionlink.ingest.shopify import ShopifyClient, normalize_product
from commissionlink.logic.commission import CommissionCalculator, default_calculator, round_money
from commissionlink.utils.dates import to_iso, utc_now

logger = logging.getLogger(__name__)

CATEGORY_PRODUCT_CAP = 500
COMMISSION_KINDS = ("product", "collection", "category")


@dataclass(slots=True)
class CommissionSetting:
    commission: float
    commission_type: str = "percentage"
    currency: str = "USD"

    def display(self) -> str:
        if self.commission_type == "percentage":
            return f"{self.commission:g}%"
        return f"${self.commission:g}"


class CommissionService:
    def __init__(
        self,
        backend: BackendClient,
        catalog: ShopifyClient,
        calculator: CommissionCalculator | None = None,
    ) -> None:
        self.backend = backend
        self.catalog = catalog
        self.calculator = calculator or default_calculator()

    async def get_product_commission(self, shop_id: str, product_id: str) -> dict[str, Any] | None:
        response = await self.backend.get_commissions(shop_id, {"productId": product_id, "type": "product"})
        records = response.get("data") or []
        if not records:
            return None
        record = records[0]
        return {
            "commission": record.get("commissionValue"),
            "commissionType": record.get("commissionType"),
            "source": "product",
            "id": record.get("id"),
        }

    async def set_product_commission(
        self,
        shop_id: str,
        product_id: str,
        setting: CommissionSetting,
        product: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Push a product stub, then its commission record."""
        if product is None:
            node = await self.catalog.fetch_product(shop_id, product_id)
            product = normalize_product(node).to_record() if node else {}
        now = to_iso(utc_now())
        variants = product.get("variants") or []
        await self.backend.sync_product(
            shop_id,
            {
                "id": product_id,
                "title": product.get("title") or "Unknown Product",
                "handle": product.get("handle"),
                "status": "active",
                "variants": [{"price": variants[0].get("price", 0) if variants else 0}],
                "createdAt": now,
                "updatedAt": now,
            },
            currency=setting.currency,
        )
        await self.backend.sync_commission(
            shop_id,
            {
                "productId": product_id,
                "commissionValue": setting.commission,
                "commissionRate": setting.commission,
                "commissionType": setting.commission_type,
                "currency": setting.currency,
                "type": "product",
                "referenceId": product_id,
            },
        )
        return {
            "id": product_id,
            "commissionValue": setting.commission,
            "commissionType": setting.commission_type,
            "productTitle": product.get("title") or "Unknown Product",
            "success": True,
        }

    async def set_category_commission(
        self, shop_id: str, category: str, setting: CommissionSetting
    ) -> dict[str, Any]:
        products: list[dict[str, Any]] = []
        async for page in self.catalog.iter_product_pages(
            shop_id, limit=CATEGORY_PRODUCT_CAP, query=f'product_type:"{category}"'
        ):
            products.extend(normalize_product(node).to_record() for node in page)

        await self.backend.sync_commission(
            shop_id,
            {
                "productId": category,
                "commissionValue": setting.commission,
                "commissionRate": setting.commission,
                "commissionType": setting.commission_type,
                "currency": setting.currency,
                "type": "category",
                "referenceId": category,
                "applyToProducts": True,
            },
        )
        outcomes = await asyncio.gather(
            *(self.set_product_commission(shop_id, product["id"], setting, product) for product in products),
            return_exceptions=True,
        )
        failed = []
        for product, outcome in zip(products, outcomes):
            if isinstance(outcome, BaseException):
                failed.append(product["id"])
                logger.warning(
                    "Failed to apply %s commission to product %s in %s: %s", category, product["id"], shop_id, outcome
                )
        updated = len(products) - len(failed)
        logger.info("Applied %s commission to %s products in %s", setting.display(), updated, category)
        return {
            "message": f'Applied {setting.display()} commission to {updated} products in category "{category}"',
            "updatedProducts": updated,
            "failedProducts": failed,
        }

    async def remove_commission(self, shop_id: str, kind: str, reference_id: str) -> dict[str, Any]:
        if kind not in COMMISSION_KINDS:
            return {"success": True}
        return await self.backend.delete_commission(shop_id, reference_id, kind)

    async def overview(self, shop_id: str) -> dict[str, Any]:
        products_response = await self.backend.get_products(shop_id)
        products = [
            product.get("data") or product for product in products_response.get("data") or []
        ]
        commissions = (await self.backend.get_commissions(shop_id)).get("data") or []

        percentages = [
            float(record.get("commissionValue") or 0)
            for record in commissions
            if record.get("commissionType", "percentage") == "percentage"
        ]
        fixed = [
            float(record.get("commissionValue") or 0)
            for record in commissions
            if record.get("commissionType") == "amount"
        ]
        stats = self.calculator.get_commission_stats(products)
        return {
            "totalCommissions": len(commissions),
            "productCommissions": len(commissions),
            "productsWithoutCommissions": max(len(products) - len(commissions), 0),
            "averageCommission": round_money(sum(percentages) / len(percentages)) if percentages else 0.0,
            "highestCommission": _highest(percentages, fixed),
            "percentageCommissionsCount": len(percentages),
            "fixedAmountCommissionsCount": len(fixed),
            "categoryStats": stats,
            "summary": {"hasCommissions": bool(commissions), "lastUpdated": to_iso(utc_now())},
        }


def _highest(percentages: list[float], fixed: list[float]) -> dict[str, Any] | None:
    if percentages:
        return {"commission": max(percentages), "type": "Product", "commissionType": "percentage"}
    if fixed:
        return {"commission": max(fixed), "type": "Product", "commissionType": "amount"}
    return None
