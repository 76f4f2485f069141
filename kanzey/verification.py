"""Door check of a presented ticket."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import TicketNotFound
from .helpers import to_iso
from .infra.sql import Gated
from .model import tickets
from .model.db import Event, Ticket, TICKET_CONFIRMED

VALID = "valid"
NOT_CONFIRMED = "not_confirmed"
ALREADY_SCANNED = "already_scanned"

_MESSAGES = {
    VALID: "Valid ticket - entry allowed",
    NOT_CONFIRMED: "Ticket is not paid",
    ALREADY_SCANNED: "Ticket already used",
}


def _reason(t: Ticket) -> str:
    if t.status != TICKET_CONFIRMED:
        return NOT_CONFIRMED
    if t.scanned:
        return ALREADY_SCANNED
    return VALID


def _result(t: Ticket, ev: Event | None) -> Dict[str, Any]:
    reason = _reason(t)
    return {
        "ticketId": t.ticket_id,
        "isValid": reason == VALID,
        "reason": reason,
        "message": _MESSAGES[reason],
        "status": t.status,
        "isScanned": bool(t.scanned),
        "scannedAt": to_iso(t.scanned_at),
        "scannedBy": t.scanned_by,
        "quantity": t.quantity,
        "holder": {
            "id": t.buyer_id,
            "name": t.buyer_name,
            "email": t.buyer_email,
        },
        "event": None if ev is None else {
            "id": ev.id,
            "title": ev.title,
            "date": ev.date,
            "time": ev.time,
            "location": ev.location,
        },
    }


async def _lookup(db: AsyncSession, ticket_id: str):
    t = await tickets.get_by_ticket_id(db, ticket_id)
    if t is None:
        raise TicketNotFound(ticket_id)
    ev = await db.get(Event, t.event_id)
    return t, ev


async def check(db: AsyncSession, gated: Gated, ticket_id: str) -> Dict[str, Any]:
    """Report whether the ticket may enter. Read only."""
    async with gated():
        async with db.begin():
            t, ev = await _lookup(db, ticket_id)
            return _result(t, ev)


async def admit(
    db: AsyncSession, gated: Gated, ticket_id: str, operator: str
) -> Dict[str, Any]:
    """
    Consume a valid ticket. Only the first admit stamps scanned_at and
    scanned_by; later ones get the already-scanned result with the original
    stamp.
    """
    async with gated():
        async with db.begin():
            scanned_at = await tickets.mark_scanned(db, ticket_id, operator)
        async with db.begin():
            t, ev = await _lookup(db, ticket_id)
            out = _result(t, ev)

    out["admitted"] = scanned_at is not None
    if out["admitted"]:
        # report the ticket as it was presented, not as it is now
        out["isValid"] = True
        out["reason"] = VALID
        out["message"] = _MESSAGES[VALID]
        logger.bind(ticket_id=ticket_id, operator=operator).info(
            "ticket admitted"
        )
    return out
