"""Order-to-click matching and order status rules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Sequence

from commissionlink.ingest.models import Click

SETTLED_STATUSES = ("paid", "partially_refunded", "refunded")


def tracking_attribute(order: Mapping[str, Any], name: str) -> str | None:
    """Track id stored by the storefront in the order's note attributes."""
    for attr in order.get("note_attributes") or []:
        if attr.get("name") == name and attr.get("value"):
            return str(attr["value"])
    return None


def order_product_ids(order: Mapping[str, Any]) -> set[str]:
    return {
        str(item["product_id"])
        for item in order.get("line_items") or []
        if item.get("product_id") is not None
    }


def match_click(
    clicks: Iterable[Click],
    *,
    ordered_at: datetime,
    product_ids: set[str],
    window: timedelta = timedelta(hours=24),
) -> Click | None:
    """First click that precedes the order within ``window`` and fits its products.

    A click without a product id is a store-wide link and matches any order.
    """
    for click in clicks:
        elapsed = ordered_at - click.clicked_at
        if not timedelta(0) < elapsed < window:
            continue
        if not click.product_id or click.product_id in product_ids:
            return click
    return None


def total_refunded(order: Mapping[str, Any]) -> float:
    total = 0.0
    for refund in order.get("refunds") or []:
        if refund.get("amount") is not None:
            total += float(refund["amount"])
            continue
        for transaction in refund.get("transactions") or []:
            if transaction.get("kind", "refund") == "refund":
                total += float(transaction.get("amount") or 0)
    return round(total, 2)


def status_transitions(order: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Sale status updates implied by an orders/updated payload."""
    transitions: list[tuple[str, str]] = []
    financial_status = order.get("financial_status")
    if financial_status in SETTLED_STATUSES or order.get("fulfillment_status") == "fulfilled":
        transitions.append(("pending", financial_status or "fulfilled"))
    if order.get("refunds"):
        transitions.append(("paid", "refunded"))
    return transitions


def line_item_tags(item: Mapping[str, Any]) -> list[str]:
    properties = item.get("properties")
    raw: Any = None
    if isinstance(properties, Mapping):
        raw = properties.get("tags")
    elif isinstance(properties, Sequence):
        raw = next(
            (prop.get("value") for prop in properties if isinstance(prop, Mapping) and prop.get("name") in ("tags", "_tags")),
            None,
        )
    if not raw:
        return []
    if isinstance(raw, str):
        return [tag.strip() for tag in raw.split(",") if tag.strip()]
    return [str(tag) for tag in raw]


def line_item_descriptor(item: Mapping[str, Any]) -> dict[str, Any]:
    """Product-shaped view of a line item for commission lookup."""
    return {
        "id": item.get("product_id"),
        "title": item.get("title") or item.get("name") or "",
        "productType": item.get("product_type") or "",
        "vendor": item.get("vendor") or "",
        "price": item.get("price"),
        "tags": line_item_tags(item),
    }
