"""Catalog, click and sync data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

from commissionlink.utils.dates import parse_timestamp, to_iso, utc_now

CLICK_VALIDITY = timedelta(hours=24)


@dataclass(slots=True)
class Variant:
    id: str | None
    price: float
    sku: str | None = None
    inventory_quantity: int = 0

    def __post_init__(self) -> None:
        self.inventory_quantity = max(int(self.inventory_quantity or 0), 0)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "price": self.price,
            "sku": self.sku,
            "inventoryQuantity": self.inventory_quantity,
        }


@dataclass(slots=True)
class Image:
    id: str | None
    url: str | None
    alt_text: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {"id": self.id, "url": self.url, "altText": self.alt_text}


@dataclass(slots=True)
class Product:
    id: str
    title: str
    handle: str | None = None
    status: str | None = None
    product_type: str | None = None
    vendor: str | None = None
    tags: list[str] = field(default_factory=list)
    variants: list[Variant] = field(default_factory=list)
    images: list[Image] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def price(self) -> float:
        return self.variants[0].price if self.variants else 0.0

    def to_record(self) -> dict[str, Any]:
        """Backend record shape."""
        return {
            "id": self.id,
            "title": self.title,
            "handle": self.handle,
            "status": self.status,
            "productType": self.product_type,
            "vendor": self.vendor,
            "tags": list(self.tags),
            "variants": [variant.to_record() for variant in self.variants],
            "images": [image.to_record() for image in self.images],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(slots=True)
class PageInfo:
    has_next_page: bool = False
    end_cursor: str | None = None


@dataclass(slots=True)
class ProductPage:
    products: list[dict[str, Any]]
    page_info: PageInfo = field(default_factory=PageInfo)


@dataclass(slots=True)
class Click:
    track_id: str
    shop_id: str | None
    product_id: str | None
    affiliate_id: str | None
    clicked_at: datetime
    expires_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None

    def __post_init__(self) -> None:
        if self.expires_at is None:
            self.expires_at = self.clicked_at + CLICK_VALIDITY

    def is_active(self, at: datetime | None = None) -> bool:
        return (at or utc_now()) < self.expires_at

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Click":
        clicked_at = parse_timestamp(record.get("clicked_at") or record.get("clickedAt"))
        if clicked_at is None:
            raise ValueError(f"Click {record.get('track_id')!r} has no click timestamp")
        product_id = record.get("product_id", record.get("productId"))
        affiliate_id = record.get("influencer_id") or record.get("affiliate_id") or record.get("affiliateId")
        return cls(
            track_id=str(record.get("track_id") or record.get("trackId")),
            shop_id=record.get("shop_id") or record.get("shopId"),
            product_id=str(product_id) if product_id not in (None, "") else None,
            affiliate_id=str(affiliate_id) if affiliate_id is not None else None,
            clicked_at=clicked_at,
            expires_at=parse_timestamp(record.get("expires_at") or record.get("expiresAt")),
            ip_address=record.get("ip_address"),
            user_agent=record.get("user_agent"),
            referrer=record.get("referrer"),
        )

    def to_record(self, device_info: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "shop_id": self.shop_id,
            "product_id": self.product_id,
            "influencer_id": self.affiliate_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent or "",
            "referrer": self.referrer or "",
            "clicked_at": to_iso(self.clicked_at),
            "expires_at": to_iso(self.expires_at),
            "device_info": dict(device_info or {}),
        }


@dataclass(slots=True)
class Attribution:
    track_id: str
    shop_id: str | None
    affiliate_id: str | None = None
    source: str = "note_attribute"
    click: Click | None = None


@dataclass(slots=True)
class SyncError:
    product_id: str | None
    error: str


@dataclass(slots=True)
class SyncResult:
    successful: int = 0
    failed: int = 0
    errors: list[SyncError] = field(default_factory=list)


@dataclass(slots=True)
class SyncStatus:
    in_progress: bool
    last_sync: datetime | None
    is_recent: bool
