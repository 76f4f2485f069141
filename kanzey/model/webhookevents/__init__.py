# model/webhookevents/__init__.py
"""
Log of provider webhook deliveries, keyed by the provider's idempotency key.

Only an optimization in front of the ticket state machine: a known key is
answered without touching the database rows, while the conditional
pending -> terminal update remains the real guard.
"""
from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from ...infra.sql import Gated
from ._redis import WebhookEventStore as RedisWebhookEventStore
from ._sql import WebhookEventStore as SqlWebhookEventStore

BACKENDS = ("sql", "redis")


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, backend: str,
              db: Optional[AsyncSession] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 24 * 3600):
    if backend == "sql":
        if db is None:
            raise RuntimeError(
                "WebhookEventStore(sql) requires db=AsyncSession"
            )
        if gated is None:
            raise RuntimeError("WebhookEventStore(sql) requires gated=Gated")
        return SqlWebhookEventStore(db=db, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "WebhookEventStore(redis) requires r=redis.Redis"
            )
        return RedisWebhookEventStore(r=r, ttl_seconds=ttl_seconds)
    raise RuntimeError(f"unknown webhook log backend: {backend}")


WebhookEventStore = SqlWebhookEventStore | RedisWebhookEventStore
__all__ = ["WebhookEventStore", "new_store", "BACKENDS"]
