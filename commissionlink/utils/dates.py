"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pendulum


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def parse_timestamp(value: Any) -> pendulum.DateTime | None:
    """Parse ISO strings, epoch milliseconds or datetimes; ``None`` when unparseable."""
    if value in (None, ""):
        return None
    if isinstance(value, pendulum.DateTime):
        return value.in_timezone("UTC")
    if isinstance(value, datetime):
        return pendulum.instance(value).in_timezone("UTC")
    if isinstance(value, (int, float)):
        return pendulum.from_timestamp(value / 1000, tz="UTC")
    try:
        parsed = pendulum.parse(str(value))
    except ValueError:
        return None
    if not isinstance(parsed, pendulum.DateTime):
        return None
    return parsed.in_timezone("UTC")


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return pendulum.instance(value).in_timezone("UTC").to_iso8601_string()
