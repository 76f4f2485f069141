from __future__ import annotations
import time

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ...infra.sql import Gated
from ..db import WebhookEventSeen


def _insert_ignore(dialect: str):
    if dialect == "postgresql":
        return pg_insert(WebhookEventSeen).on_conflict_do_nothing(
            index_elements=["idempotency_key"]
        )
    if dialect == "sqlite":
        return sqlite_insert(WebhookEventSeen).on_conflict_do_nothing(
            index_elements=["idempotency_key"]
        )
    return insert(WebhookEventSeen)


class WebhookEventStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def seen(self, key: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(WebhookEventSeen.idempotency_key)
                    .where(WebhookEventSeen.idempotency_key == key)
                )).first()
        return row is not None

    async def remember(self, key: str, transaction_id: str) -> bool:
        stmt = _insert_ignore(self.db.get_bind().dialect.name).values(
            idempotency_key=key,
            transaction_id=transaction_id,
            created_at=time.time(),
        ).returning(WebhookEventSeen.idempotency_key)
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(stmt)).first()
        return row is not None
