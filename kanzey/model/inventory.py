# model/inventory.py
"""
Event inventory: the only code allowed to touch an event's counters.

- availability read (soft: nothing is locked or held)
- confirmed sale: one conditional UPDATE that decrements available_tickets
  and bumps tickets_sold/revenue, or changes nothing at all
- snapshot for dashboards

All functions run inside the caller's transaction; they never begin or
commit on their own, so a sale can share a transaction with the ticket
status change that caused it.
"""

from __future__ import annotations
import time
from typing import Any, Dict

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    EventNotFound, EventNotPurchasable, InsufficientAvailability, InvalidState,
)
from ..helpers import to_iso
from .db import Event, Ticket, EVENT_PUBLISHED, TICKET_PENDING


def is_purchasable(event) -> bool:
    # an Event or a row carrying status and is_active
    return event.status == EVENT_PUBLISHED and bool(event.is_active)


async def get_availability(db: AsyncSession, event_id: str) -> Dict[str, Any]:
    """
    Returns {"event_id", "available_tickets", "capacity", "price"}.
    Raises EventNotFound / EventNotPurchasable.
    """
    row = (await db.execute(
        select(
            Event.id, Event.available_tickets, Event.capacity, Event.price,
            Event.status, Event.is_active,
        ).where(Event.id == event_id)
    )).first()
    if row is None:
        raise EventNotFound(event_id)
    if not is_purchasable(row):
        status = row.status if row.is_active else "inactive"
        raise EventNotPurchasable(event_id, status)
    return {
        "event_id": row.id,
        "available_tickets": int(row.available_tickets),
        "capacity": int(row.capacity),
        "price": int(row.price),
    }


async def apply_confirmed_sale(
    db: AsyncSession, event_id: str, quantity: int, amount: int
) -> Dict[str, int]:
    """
    Atomically move `quantity` units from available to sold and add `amount`
    to revenue. Fails closed: if fewer than `quantity` units remain, nothing
    is written and InsufficientAvailability is raised.
    """
    if quantity < 1:
        raise ValueError("quantity must be >= 1")
    row = (await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .where(Event.available_tickets >= quantity)
        .values(
            available_tickets=Event.available_tickets - quantity,
            tickets_sold=Event.tickets_sold + quantity,
            revenue=Event.revenue + amount,
            updated_at=time.time(),
        )
        .returning(
            Event.available_tickets, Event.tickets_sold, Event.revenue,
        )
        .execution_options(synchronize_session=False)
    )).first()

    if row is None:
        # tell "gone" apart from "sold out"
        current = (await db.execute(
            select(Event.available_tickets).where(Event.id == event_id)
        )).scalar_one_or_none()
        if current is None:
            raise EventNotFound(event_id)
        raise InsufficientAvailability(event_id, quantity, int(current))

    return {
        "available_tickets": int(row.available_tickets),
        "tickets_sold": int(row.tickets_sold),
        "revenue": int(row.revenue),
    }


async def resize_capacity(
    db: AsyncSession, event_id: str, capacity: int
) -> Dict[str, int]:
    """
    Change an event's capacity, keeping sold + available == capacity.
    Refused if fewer seats would remain than are already sold.
    """
    if capacity < 1:
        raise ValueError("capacity must be >= 1")
    row = (await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .where(Event.tickets_sold <= capacity)
        .values(
            capacity=capacity,
            available_tickets=capacity - Event.tickets_sold,
            updated_at=time.time(),
        )
        .returning(Event.capacity, Event.available_tickets)
        .execution_options(synchronize_session=False)
    )).first()
    if row is None:
        sold = (await db.execute(
            select(Event.tickets_sold).where(Event.id == event_id)
        )).scalar_one_or_none()
        if sold is None:
            raise EventNotFound(event_id)
        raise InvalidState(
            f"capacity {capacity} is below tickets already sold ({sold})"
        )
    return {
        "capacity": int(row.capacity),
        "available_tickets": int(row.available_tickets),
    }


async def inventory_snapshot(db: AsyncSession, event_id: str) -> Dict[str, Any]:
    """
    {"capacity", "sold", "available", "revenue", "pending_attempts",
     "sold_out", "timestamp"}
    """
    ev = (await db.execute(
        select(
            Event.capacity, Event.tickets_sold, Event.available_tickets,
            Event.revenue,
        ).where(Event.id == event_id)
    )).first()
    if ev is None:
        raise EventNotFound(event_id)

    pending = (await db.execute(
        select(func.count()).select_from(Ticket).where(
            Ticket.event_id == event_id, Ticket.status == TICKET_PENDING,
        )
    )).scalar_one()

    return {
        "event_id": event_id,
        "capacity": int(ev.capacity),
        "sold": int(ev.tickets_sold),
        "available": int(ev.available_tickets),
        "revenue": int(ev.revenue),
        "pending_attempts": int(pending),
        "sold_out": int(ev.available_tickets) <= 0,
        "timestamp": to_iso(time.time()),
    }
