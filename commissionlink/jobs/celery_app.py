"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import asyncio
import logging

from celery import Celery

from commissionlink.config import load_settings
from commissionlink.jobs.product_sync import sync_all_shops

logger = logging.getLogger(__name__)

settings = load_settings()

celery_app = Celery("commissionlink", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.timezone = "UTC"
celery_app.conf.beat_schedule = {
    "product-resync": {
        "task": "commissionlink.jobs.product_sync.sync_all_shops",
        "schedule": settings.sync_interval_minutes * 60.0,
    },
}


@celery_app.task(name="commissionlink.jobs.product_sync.sync_all_shops")
def sync_all_shops_task() -> dict[str, int]:  # pragma: no cover - executed by worker
    counts = asyncio.run(sync_all_shops(settings))
    logger.info("Scheduled product sync finished for %s shops", len(counts))
    return counts
