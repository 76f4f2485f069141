# model/catalog.py
from __future__ import annotations
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import EventNotFound, InvalidState
from ..helpers import new_event_id, to_iso
from . import inventory, tickets
from .db import Event

# never writable through the catalog
_COUNTERS = {"available_tickets", "tickets_sold", "revenue"}


async def create_event(
    db: AsyncSession, data: Dict[str, Any], organizer_id: str
) -> Event:
    now = time.time()
    fields = {k: v for k, v in data.items() if k not in _COUNTERS}
    ev = Event(
        id=new_event_id(),
        organizer_id=organizer_id,
        available_tickets=int(fields["capacity"]),
        tickets_sold=0,
        revenue=0,
        is_active=True,
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(ev)
    await db.flush()
    return ev


async def get_event(db: AsyncSession, event_id: str) -> Event:
    ev = await db.get(Event, event_id, populate_existing=True)
    if ev is None:
        raise EventNotFound(event_id)
    return ev


async def list_events(
    db: AsyncSession,
    *,
    status: Optional[str] = "published",
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    organizer_id: Optional[str] = None,
    limit: int = 200,
) -> List[Event]:
    stmt = select(Event)
    if status:
        stmt = stmt.where(Event.status == status)
    if category and category != "all":
        stmt = stmt.where(Event.category == category)
    if featured:
        stmt = stmt.where(Event.is_featured.is_(True))
    if organizer_id:
        stmt = stmt.where(Event.organizer_id == organizer_id)
    stmt = stmt.order_by(Event.created_at.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def update_event(
    db: AsyncSession, event_id: str, changes: Dict[str, Any]
) -> Event:
    """
    Apply a partial update. Counters are ignored; a capacity change goes
    through inventory.resize_capacity. Price changes never touch existing
    tickets, whose totals were fixed when they were created.
    """
    ev = await get_event(db, event_id)
    changes = {k: v for k, v in changes.items() if k not in _COUNTERS}
    capacity = changes.pop("capacity", None)
    for k, v in changes.items():
        setattr(ev, k, v)
    ev.updated_at = time.time()
    await db.flush()

    if capacity is not None and int(capacity) != ev.capacity:
        await inventory.resize_capacity(db, event_id, int(capacity))
        ev = await get_event(db, event_id)
    return ev


async def delete_event(db: AsyncSession, event_id: str) -> None:
    ev = await get_event(db, event_id)
    if await tickets.count_for_event(db, event_id) > 0:
        raise InvalidState(
            "event has ticket records; set its status to cancelled instead"
        )
    await db.delete(ev)
    await db.flush()


def event_to_dict(ev: Event) -> Dict[str, Any]:
    return {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "shortDescription": ev.short_description,
        "date": ev.date,
        "time": ev.time,
        "location": ev.location,
        "address": ev.address,
        "category": ev.category,
        "tags": list(ev.tags or []),
        "image": ev.image or "",
        "price": ev.price,
        "capacity": ev.capacity,
        "availableTickets": ev.available_tickets,
        "ticketsSold": ev.tickets_sold,
        "revenue": ev.revenue,
        "status": ev.status,
        "isFeatured": bool(ev.is_featured),
        "isActive": bool(ev.is_active),
        "organizer": ev.organizer_id,
        "createdAt": to_iso(ev.created_at),
        "updatedAt": to_iso(ev.updated_at),
    }


async def dashboard(db: AsyncSession, recent: int = 5) -> Dict[str, Any]:
    """
    Admin overview. Sales figures come from the event counters, which only
    confirmed payments move.
    """
    n_events, sold, revenue = (await db.execute(
        select(
            func.count(Event.id),
            func.coalesce(func.sum(Event.tickets_sold), 0),
            func.coalesce(func.sum(Event.revenue), 0),
        )
    )).one()

    recent_events = (await db.execute(
        select(Event).order_by(Event.created_at.desc()).limit(recent)
    )).scalars().all()

    sales = await tickets.list_recent_confirmed(db, limit=recent)
    titles = {}
    if sales:
        titles = dict((await db.execute(
            select(Event.id, Event.title)
            .where(Event.id.in_([t.event_id for t in sales]))
        )).all())

    return {
        "totalEvents": int(n_events),
        "totalUsers": await tickets.count_buyers(db),
        "totalTickets": int(sold),
        "totalRevenue": int(revenue),
        "recentEvents": [event_to_dict(ev) for ev in recent_events],
        "recentSales": [
            {
                "ticketId": t.ticket_id,
                "event": {"id": t.event_id, "title": titles.get(t.event_id)},
                "user": {"id": t.buyer_id, "email": t.buyer_email},
                "quantity": t.quantity,
                "totalPrice": t.total_price,
                "currency": t.currency,
                "paymentDate": to_iso(t.payment_date),
                "createdAt": to_iso(t.created_at),
            }
            for t in sales
        ],
    }
