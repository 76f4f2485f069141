import pytest
import pytest_asyncio

from kanzey.auth import Identity
from kanzey.infra.sql import make_async_engine
from kanzey.model import catalog, tickets
from kanzey.model.db import Base
from kanzey.payments import InTouchPay

WEBHOOK_SECRET = "whsec-test"

EVENT_DATA = {
    "title": "Concert Youssou N'Dour",
    "description": "Live at the Grand Theatre",
    "short_description": "Live",
    "date": "2026-12-31",
    "time": "20:00",
    "location": "Grand Theatre",
    "address": "Dakar",
    "category": "concert",
    "tags": ["live"],
    "image": "",
    "price": 5000,
    "capacity": 100,
    "status": "published",
    "is_featured": False,
}


class Db:
    """Engine, session factory and gate for one test database."""

    def __init__(self, engine, SessionAsync, gated):
        self.engine = engine
        self.SessionAsync = SessionAsync
        self.gated = gated

    async def event(self, event_id):
        async with self.SessionAsync() as s:
            async with s.begin():
                return await catalog.get_event(s, event_id)

    async def ticket(self, transaction_id):
        async with self.SessionAsync() as s:
            async with s.begin():
                return await tickets.get_by_transaction(s, transaction_id)


@pytest_asyncio.fixture
async def db(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'kanzey-test.db'}"
    engine, SessionAsync, _, gated = make_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield Db(engine, SessionAsync, gated)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session(db):
    async with db.SessionAsync() as s:
        yield s


@pytest.fixture
def make_event(db):
    async def _make(**overrides):
        data = dict(EVENT_DATA, **overrides)
        async with db.SessionAsync() as s:
            async with s.begin():
                ev = await catalog.create_event(s, data, "org-1")
                return ev.id
    return _make


@pytest.fixture
def buyer():
    return Identity(id="user-1", role="customer", email="awa@example.com",
                    name="Awa Diop")


@pytest.fixture
def adapter():
    return InTouchPay(
        redirect_url="https://pay.example.com/checkout",
        merchant_id="MERCHANT-1",
        secret_key="merchant-secret",
        api_base_url="https://api.kanzey.test",
        webhook_secret=WEBHOOK_SECRET,
        service_code="PAIEMENTMARCHANDOMQRCODE",
    )
