"""Shop domains, smart-link URLs and the signed tracking cookie."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

from itsdangerous import BadSignature, URLSafeTimedSerializer

TRACKING_COOKIE = "commission_track"
TRACKING_SALT = "smart-link-click"


def shop_domain(shop_id: str) -> str:
    if "." in shop_id:
        return shop_id
    return f"{shop_id}.myshopify.com"


def shop_id_from_domain(domain: str | None) -> str | None:
    if not domain:
        return None
    return domain.strip().removesuffix(".myshopify.com") or None


def build_tracking_url(
    app_url: str,
    shop_id: str,
    product_id: str | None,
    track_id: str,
    *,
    params: Mapping[str, Any] | None = None,
    utm: Mapping[str, Any] | None = None,
) -> str:
    query: list[tuple[str, str]] = [("shop", shop_id), ("product", product_id or ""), ("track", track_id)]
    query.extend((key, str(value)) for key, value in (params or {}).items())
    query.extend((f"utm_{key}", str(value)) for key, value in (utm or {}).items())
    return f"{app_url.rstrip('/')}/track/{track_id}?{urlencode(query)}"


def product_url(shop_id: str, handle_or_id: str | None) -> str:
    base = f"https://{shop_domain(shop_id)}"
    if not handle_or_id:
        return base
    return f"{base}/products/{handle_or_id}"


def is_shop_url(url: str, shop_id: str) -> bool:
    """True when ``url`` is an http(s) URL on the shop's own storefront host."""
    if not shop_id:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and (parsed.hostname or "").lower() == shop_domain(shop_id).lower()


def with_tracking_params(url: str, *, track_id: str, affiliate_id: str | None, product_id: str | None) -> str:
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query["ref_track"] = track_id
    if affiliate_id:
        query["ref_affiliate"] = affiliate_id
    if product_id:
        query["ref_product"] = product_id
    return urlunparse(parsed._replace(query=urlencode(query)))


def client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("x-real-ip") or fallback or "0.0.0.0"


def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret)


def sign_tracking(payload: dict[str, object], secret: str) -> str:
    return _serializer(secret).dumps(payload, salt=TRACKING_SALT)


def load_tracking(token: str, secret: str, *, max_age: int) -> dict[str, object] | None:
    """Return the cookie payload, or ``None`` when tampered with or expired."""
    try:
        data = _serializer(secret).loads(token, max_age=max_age, salt=TRACKING_SALT)
    except BadSignature:
        return None
    if not isinstance(data, dict):
        return None
    return data
