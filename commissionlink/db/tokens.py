"""Shopify access token storage."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, MetaData, Table, Text, delete, insert, select
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

shop_tokens = Table(
    "shop_tokens",
    metadata,
    Column("shop_id", Text, primary_key=True),
    Column("access_token", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


class TokenStore:
    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self.engine = engine
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        metadata.create_all(self.engine, tables=[shop_tokens])

    def store_access_token(self, shop_id: str, access_token: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(shop_tokens).where(shop_tokens.c.shop_id == shop_id))
            conn.execute(
                insert(shop_tokens).values(
                    shop_id=shop_id,
                    access_token=access_token,
                    updated_at=datetime.now(timezone.utc),
                )
            )
        logger.info("Stored access token for %s", shop_id)

    def get_access_token(self, shop_id: str) -> str | None:
        with self.engine.connect() as conn:
            token = conn.execute(
                select(shop_tokens.c.access_token).where(shop_tokens.c.shop_id == shop_id)
            ).scalar_one_or_none()
        if token is None:
            logger.info("No access token found for %s", shop_id)
        return token

    def remove_access_token(self, shop_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(shop_tokens).where(shop_tokens.c.shop_id == shop_id))
        return result.rowcount > 0

    def all_shops(self) -> list[str]:
        with self.engine.connect() as conn:
            return list(conn.execute(select(shop_tokens.c.shop_id).order_by(shop_tokens.c.shop_id)).scalars())

    def has_valid_token(self, shop_id: str) -> bool:
        return self.get_access_token(shop_id) is not None
