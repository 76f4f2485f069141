import asyncio

import pytest

from kanzey.infra import timings
from kanzey.infra.sql import _normalize_async_url, make_async_engine


@pytest.fixture(autouse=True)
def _clean_timings():
    timings.reset()
    yield
    timings.reset()


@pytest.mark.asyncio
async def test_timeit_records_samples():
    for _ in range(3):
        async with timings.timeit("demo.op"):
            await asyncio.sleep(0)
    s = timings.summary()
    assert s["demo.op"]["n"] == 3
    assert s["demo.op"]["mean_ms"] >= 0.0


def test_samples_are_capped(monkeypatch):
    monkeypatch.setattr(timings, "MAX_SAMPLES_PER_KIND", 5)
    for i in range(12):
        timings.record_timing("capped", float(i))
    assert timings.summary()["capped"]["n"] == 5


def test_normalize_async_url():
    assert _normalize_async_url("sqlite:///x.db") == \
        "sqlite+aiosqlite:///x.db"
    assert _normalize_async_url("postgresql://u@h/db") == \
        "postgresql+asyncpg://u@h/db"
    assert _normalize_async_url("postgres://u@h/db") == \
        "postgresql+asyncpg://u@h/db"


@pytest.mark.asyncio
async def test_gate_limits_concurrency(tmp_path):
    engine, _, db_gate, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'gate.db'}", gate_limit=2
    )
    inside = 0
    peak = 0

    async def worker():
        nonlocal inside, peak
        async with gated():
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    try:
        await asyncio.gather(*(worker() for _ in range(6)))
    finally:
        await engine.dispose()
    assert peak == 2
