"""Runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

DEFAULT_BACKEND_URL = "https://commerce.example.com/api"
DEFAULT_APP_URL = "https://commissionlink.example.com"


@dataclass(slots=True, frozen=True)
class Settings:
    backend_base_url: str = DEFAULT_BACKEND_URL
    app_url: str = DEFAULT_APP_URL
    shopify_api_version: str = "2024-01"
    database_url: str = "sqlite:///commissionlink.db"
    redis_url: str = "redis://redis:6379/0"
    signing_secret: str = "change-me"
    default_currency: str = "USD"
    request_timeout: float = 30.0
    sync_timeout: float = 30.0
    sync_freshness_window_ms: int = 5 * 60 * 1000
    sync_batch_size: int = 10
    sync_batch_concurrency: int = 10
    sync_page_size: int = 250
    sync_default_limit: int = 250
    sync_interval_minutes: int = 60
    click_lookback_hours: int = 48
    click_attribution_window_hours: int = 24
    click_expiry_hours: int = 24
    track_attribute_name: str = "commission_track_id"
    shopify_requests_per_second: float = 2.0

    @property
    def sync_freshness_window(self) -> float:
        """Freshness window in seconds."""
        return self.sync_freshness_window_ms / 1000


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build settings from the environment (``.env`` is honoured when ``env`` is omitted)."""
    if env is None:
        load_dotenv()
        env = os.environ
    defaults = Settings()
    settings = Settings(
        backend_base_url=env.get("BACKEND_API_URL", defaults.backend_base_url).rstrip("/"),
        app_url=env.get("APP_URL", defaults.app_url).rstrip("/"),
        shopify_api_version=env.get("SHOPIFY_API_VERSION", defaults.shopify_api_version),
        database_url=env.get("DATABASE_URL", defaults.database_url),
        redis_url=env.get("REDIS_URL", defaults.redis_url),
        signing_secret=env.get("SIGNING_SECRET", defaults.signing_secret),
        default_currency=env.get("DEFAULT_CURRENCY", defaults.default_currency),
        request_timeout=float(env.get("REQUEST_TIMEOUT", defaults.request_timeout)),
        sync_timeout=float(env.get("SYNC_TIMEOUT", defaults.sync_timeout)),
        sync_freshness_window_ms=int(env.get("SYNC_FRESHNESS_WINDOW_MS", defaults.sync_freshness_window_ms)),
        sync_batch_size=int(env.get("SYNC_BATCH_SIZE", defaults.sync_batch_size)),
        sync_batch_concurrency=int(env.get("SYNC_BATCH_CONCURRENCY", defaults.sync_batch_concurrency)),
        sync_page_size=int(env.get("SYNC_PAGE_SIZE", defaults.sync_page_size)),
        sync_default_limit=int(env.get("SYNC_DEFAULT_LIMIT", defaults.sync_default_limit)),
        sync_interval_minutes=int(env.get("SYNC_INTERVAL_MINUTES", defaults.sync_interval_minutes)),
        click_lookback_hours=int(env.get("CLICK_LOOKBACK_HOURS", defaults.click_lookback_hours)),
        click_attribution_window_hours=int(
            env.get("CLICK_ATTRIBUTION_WINDOW_HOURS", defaults.click_attribution_window_hours)
        ),
        click_expiry_hours=int(env.get("CLICK_EXPIRY_HOURS", defaults.click_expiry_hours)),
        track_attribute_name=env.get("TRACK_ATTRIBUTE_NAME", defaults.track_attribute_name),
        shopify_requests_per_second=float(
            env.get("SHOPIFY_REQUESTS_PER_SECOND", defaults.shopify_requests_per_second)
        ),
    )
    _validate(settings)
    return settings


def _validate(settings: Settings) -> None:
    positive = {
        "SYNC_BATCH_SIZE": settings.sync_batch_size,
        "SYNC_BATCH_CONCURRENCY": settings.sync_batch_concurrency,
        "SYNC_PAGE_SIZE": settings.sync_page_size,
        "SHOPIFY_REQUESTS_PER_SECOND": settings.shopify_requests_per_second,
        "CLICK_ATTRIBUTION_WINDOW_HOURS": settings.click_attribution_window_hours,
    }
    for name, value in positive.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")
    if settings.sync_page_size > 250:
        raise ValueError("SYNC_PAGE_SIZE cannot exceed Shopify's page limit of 250")
