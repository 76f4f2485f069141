import pytest

from kanzey.errors import (
    EventNotFound, EventNotPurchasable, InsufficientAvailability,
    ValidationError,
)
from kanzey.model import catalog
from kanzey.model.db import TICKET_PENDING
from kanzey.purchase import initiate_purchase


async def _buy(session, db, adapter, buyer, event_id, quantity, **kw):
    params = dict(
        event_id=event_id,
        quantity=quantity,
        buyer=buyer,
        currency="FCFA",
        payment_method="intouch",
        qr_base_url="https://kanzey.co/verify-ticket",
        max_per_order=10,
    )
    params.update(kw)
    return await initiate_purchase(session, db.gated, adapter, **params)


@pytest.mark.asyncio
async def test_initiate_creates_pending_ticket(db, session, make_event,
                                               adapter, buyer):
    event_id = await make_event(capacity=100, price=5000)
    out = await _buy(session, db, adapter, buyer, event_id, 3)

    assert out["amount"] == 15000
    assert out["currency"] == "FCFA"
    assert out["quantity"] == 3
    assert out["transaction_id"].startswith("KANZ-")
    assert out["ticket_id"].startswith("TKT-")
    assert out["redirect_url"].startswith("https://pay.example.com/checkout?")

    t = await db.ticket(out["transaction_id"])
    assert t.status == TICKET_PENDING
    assert t.ticket_id == out["ticket_id"]
    assert t.quantity == 3
    assert t.total_price == 15000
    assert t.buyer_id == "user-1"
    assert t.buyer_email == "awa@example.com"
    assert t.qr_data == f"https://kanzey.co/verify-ticket/{t.ticket_id}"
    assert t.scanned is False


@pytest.mark.asyncio
async def test_initiate_does_not_hold_inventory(db, session, make_event,
                                                adapter, buyer):
    event_id = await make_event(capacity=100, price=5000)
    await _buy(session, db, adapter, buyer, event_id, 3)
    ev = await db.event(event_id)
    assert ev.available_tickets == 100
    assert ev.tickets_sold == 0
    assert ev.revenue == 0


@pytest.mark.asyncio
async def test_initiate_more_than_available(db, session, make_event,
                                            adapter, buyer):
    event_id = await make_event(capacity=2)
    with pytest.raises(InsufficientAvailability):
        await _buy(session, db, adapter, buyer, event_id, 3)


@pytest.mark.asyncio
async def test_initiate_unknown_event(db, session, adapter, buyer):
    with pytest.raises(EventNotFound):
        await _buy(session, db, adapter, buyer, "evt_missing", 1)


@pytest.mark.asyncio
async def test_initiate_unpublished_event(db, session, make_event, adapter,
                                          buyer):
    event_id = await make_event(status="draft")
    with pytest.raises(EventNotPurchasable):
        await _buy(session, db, adapter, buyer, event_id, 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1, 11])
async def test_initiate_quantity_bounds(db, session, make_event, adapter,
                                        buyer, quantity):
    event_id = await make_event()
    with pytest.raises(ValidationError):
        await _buy(session, db, adapter, buyer, event_id, quantity)


@pytest.mark.asyncio
async def test_each_attempt_gets_its_own_ids(db, session, make_event, adapter,
                                             buyer):
    event_id = await make_event()
    a = await _buy(session, db, adapter, buyer, event_id, 1)
    b = await _buy(session, db, adapter, buyer, event_id, 1)
    assert a["transaction_id"] != b["transaction_id"]
    assert a["ticket_id"] != b["ticket_id"]


@pytest.mark.asyncio
async def test_price_change_does_not_touch_existing_tickets(
    db, session, make_event, adapter, buyer
):
    event_id = await make_event(price=5000)
    out = await _buy(session, db, adapter, buyer, event_id, 2)

    async with db.SessionAsync() as s:
        async with s.begin():
            await catalog.update_event(s, event_id, {"price": 9000})

    t = await db.ticket(out["transaction_id"])
    assert t.total_price == 10000

    later = await _buy(session, db, adapter, buyer, event_id, 2)
    assert later["amount"] == 18000
