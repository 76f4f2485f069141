from unittest.mock import AsyncMock

import pytest

from kanzey.model.webhookevents import new_store
from kanzey.model.webhookevents._redis import k_webhook


@pytest.mark.asyncio
async def test_sql_store_remembers_once(db, session):
    store = new_store(backend="sql", db=session, gated=db.gated)
    assert await store.seen("evt-1") is False
    assert await store.remember("evt-1", "KANZ-1") is True
    assert await store.seen("evt-1") is True
    assert await store.remember("evt-1", "KANZ-1") is False
    assert await store.seen("evt-2") is False


@pytest.mark.asyncio
async def test_redis_store_uses_set_nx():
    r = AsyncMock()
    r.exists.return_value = 0
    r.set.return_value = True
    store = new_store(backend="redis", r=r, ttl_seconds=60)

    assert await store.seen("evt-1") is False
    r.exists.assert_awaited_once_with(k_webhook("evt-1"))

    assert await store.remember("evt-1", "KANZ-1") is True
    r.set.assert_awaited_once_with(
        k_webhook("evt-1"), "KANZ-1", nx=True, ex=60
    )


@pytest.mark.asyncio
async def test_redis_store_second_writer_loses():
    r = AsyncMock()
    r.exists.return_value = 1
    r.set.return_value = None
    store = new_store(backend="redis", r=r, ttl_seconds=60)
    assert await store.seen("evt-1") is True
    assert await store.remember("evt-1", "KANZ-1") is False


def test_factory_rejects_bad_config():
    with pytest.raises(RuntimeError):
        new_store(backend="sql")
    with pytest.raises(RuntimeError):
        new_store(backend="redis")
    with pytest.raises(RuntimeError):
        new_store(backend="memcached")
