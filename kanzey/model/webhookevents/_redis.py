from __future__ import annotations
import redis.asyncio as redis


# ---- keys
def k_webhook(key: str) -> str: return f"webhook:{key}"


class WebhookEventStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def seen(self, key: str) -> bool:
        return bool(await self.r.exists(k_webhook(key)))

    async def remember(self, key: str, transaction_id: str) -> bool:
        # NX: True only for the first writer
        ok = await self.r.set(
            k_webhook(key), transaction_id, nx=True, ex=self.ttl
        )
        return bool(ok)
