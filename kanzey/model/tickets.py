# model/tickets.py
"""
Ticket records: one row per purchase attempt.

State changes are conditional UPDATEs keyed by the current state, so two
concurrent writers can never both win:
    pending   -> confirmed | failed | cancelled
    unscanned -> scanned   (confirmed tickets only)
Like model.inventory, nothing here begins or commits a transaction.
"""

from __future__ import annotations
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import to_iso
from .db import (
    Ticket, TICKET_PENDING, TICKET_CONFIRMED, TICKET_TERMINAL,
)

_RETURNED = (
    Ticket.ticket_id, Ticket.transaction_id, Ticket.event_id,
    Ticket.buyer_id, Ticket.quantity, Ticket.total_price, Ticket.status,
)


async def create_pending(
    db: AsyncSession,
    *,
    ticket_id: str,
    transaction_id: str,
    event_id: str,
    buyer_id: str,
    buyer_email: str,
    buyer_name: str,
    quantity: int,
    total_price: int,
    currency: str,
    payment_method: str,
    qr_data: str,
) -> Ticket:
    now = time.time()
    ticket = Ticket(
        ticket_id=ticket_id,
        transaction_id=transaction_id,
        event_id=event_id,
        buyer_id=buyer_id,
        buyer_email=buyer_email,
        buyer_name=buyer_name,
        quantity=quantity,
        total_price=total_price,
        currency=currency,
        status=TICKET_PENDING,
        payment_method=payment_method,
        qr_data=qr_data,
        scanned=False,
        created_at=now,
        updated_at=now,
    )
    db.add(ticket)
    await db.flush()
    return ticket


async def get_by_transaction(
    db: AsyncSession, transaction_id: str
) -> Optional[Ticket]:
    return (await db.execute(
        select(Ticket)
        .where(Ticket.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()


async def get_by_ticket_id(db: AsyncSession, ticket_id: str) -> Optional[Ticket]:
    return await db.get(Ticket, ticket_id, populate_existing=True)


async def transition_from_pending(
    db: AsyncSession,
    transaction_id: str,
    to_status: str,
    *,
    reason: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    pending -> `to_status` as one statement. Returns the updated row, or None
    if the ticket is missing or no longer pending (someone else won).
    """
    if to_status not in TICKET_TERMINAL:
        raise ValueError(f"not a terminal status: {to_status}")
    now = time.time()
    values: Dict[str, Any] = {"status": to_status, "updated_at": now}
    if to_status == TICKET_CONFIRMED:
        values["payment_date"] = now
    else:
        values["failure_reason"] = reason

    row = (await db.execute(
        update(Ticket)
        .where(Ticket.transaction_id == transaction_id)
        .where(Ticket.status == TICKET_PENDING)
        .values(**values)
        .returning(*_RETURNED)
        .execution_options(synchronize_session=False)
    )).first()
    return dict(row._mapping) if row is not None else None


async def mark_scanned(
    db: AsyncSession, ticket_id: str, operator: str
) -> Optional[float]:
    """
    unscanned -> scanned for a confirmed ticket. Returns the scan timestamp,
    or None if the ticket was already scanned (or is not confirmed).
    """
    now = time.time()
    row = (await db.execute(
        update(Ticket)
        .where(Ticket.ticket_id == ticket_id)
        .where(Ticket.status == TICKET_CONFIRMED)
        .where(Ticket.scanned.is_(False))
        .values(scanned=True, scanned_at=now, scanned_by=operator,
                updated_at=now)
        .returning(Ticket.scanned_at)
        .execution_options(synchronize_session=False)
    )).first()
    return float(row[0]) if row is not None else None


async def list_for_buyer(
    db: AsyncSession, buyer_id: str, limit: int = 100
) -> List[Ticket]:
    rows = (await db.execute(
        select(Ticket)
        .where(Ticket.buyer_id == buyer_id)
        .order_by(Ticket.created_at.desc())
        .limit(limit)
    )).scalars().all()
    return list(rows)


async def list_pending(
    db: AsyncSession, *, older_than: Optional[float] = None, limit: int = 200
) -> List[Ticket]:
    stmt = select(Ticket).where(Ticket.status == TICKET_PENDING)
    if older_than is not None:
        stmt = stmt.where(Ticket.created_at < older_than)
    stmt = stmt.order_by(Ticket.created_at.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def count_pending(db: AsyncSession) -> int:
    return int((await db.execute(
        select(func.count()).select_from(Ticket)
        .where(Ticket.status == TICKET_PENDING)
    )).scalar_one())


async def count_for_event(db: AsyncSession, event_id: str) -> int:
    return int((await db.execute(
        select(func.count()).select_from(Ticket)
        .where(Ticket.event_id == event_id)
    )).scalar_one())


async def list_recent_confirmed(db: AsyncSession, limit: int = 5) -> List[Ticket]:
    return list((await db.execute(
        select(Ticket)
        .where(Ticket.status == TICKET_CONFIRMED)
        .order_by(Ticket.payment_date.desc())
        .limit(limit)
    )).scalars().all())


async def count_buyers(db: AsyncSession) -> int:
    # users live upstream; anyone holding a paid ticket counts
    return int((await db.execute(
        select(func.count(func.distinct(Ticket.buyer_id)))
        .where(Ticket.status == TICKET_CONFIRMED)
    )).scalar_one())


def ticket_to_dict(t: Ticket) -> Dict[str, Any]:
    return {
        "ticketId": t.ticket_id,
        "transactionId": t.transaction_id,
        "event": t.event_id,
        "user": t.buyer_id,
        "quantity": t.quantity,
        "totalPrice": t.total_price,
        "currency": t.currency,
        "status": t.status,
        "paymentMethod": t.payment_method,
        "paymentDate": to_iso(t.payment_date),
        "failureReason": t.failure_reason,
        "qrCode": {"data": t.qr_data},
        "isScanned": bool(t.scanned),
        "scannedAt": to_iso(t.scanned_at),
        "scannedBy": t.scanned_by,
        "createdAt": to_iso(t.created_at),
    }
