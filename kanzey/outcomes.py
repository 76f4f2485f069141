"""
Payment outcomes.

A purchase attempt can hear about its payment three ways: the provider's
webhook (authoritative), the buyer's browser coming back on return_url
(only a hint; we ask the provider), and the buyer hitting cancel.
Whatever the channel and however often it fires, a ticket moves out of
`pending` once, and a confirmation adjusts inventory once, in the same
transaction as the status change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import httpx
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    ExternalServiceError, InsufficientAvailability, TransactionNotFound,
)
from .infra.sql import Gated
from .infra.timings import timeit
from .model import catalog, inventory, tickets
from .model.db import (
    TICKET_PENDING, TICKET_CONFIRMED, TICKET_FAILED, TICKET_CANCELLED,
)
from .notify import TicketNotifier
from .payments import PaymentAdapter, SUCCEEDED, FAILED, PENDING

# failure_reason values
REASON_PAYMENT_FAILED = "payment_failed"
REASON_AMOUNT_MISMATCH = "amount_mismatch"
REASON_SOLD_OUT = "insufficient_availability"
REASON_CANCELLED = "cancelled_by_buyer"
REASON_EXPIRED = "expired"


@dataclass
class OutcomeResult:
    transaction_id: str
    ticket_id: str
    status: str
    # True only for the call that moved the ticket out of pending
    applied: bool
    reason: Optional[str] = None

    @property
    def idempotent(self) -> bool:
        return not self.applied


async def _load(db: AsyncSession, transaction_id: str):
    async with db.begin():
        t = await tickets.get_by_transaction(db, transaction_id)
        if t is None:
            raise TransactionNotFound(transaction_id)
        return t.ticket_id, t.status, t.total_price, t.failure_reason


async def apply_outcome(
    db: AsyncSession,
    gated: Gated,
    transaction_id: str,
    kind: str,
    *,
    amount: Optional[int] = None,
    notifier: Optional[TicketNotifier] = None,
) -> OutcomeResult:
    """
    Apply a normalized provider outcome (succeeded | failed | pending).

    Already-terminal tickets are left alone and reported as they are. A
    success that would oversell fails the ticket and raises
    InsufficientAvailability.
    """
    log = logger.bind(transaction_id=transaction_id)

    async with gated():
        ticket_id, status, total_price, reason = await _load(
            db, transaction_id
        )
        if status != TICKET_PENDING or kind == PENDING:
            return OutcomeResult(transaction_id, ticket_id, status, False,
                                 reason)

        fail_reason = REASON_PAYMENT_FAILED
        if (kind == SUCCEEDED and amount is not None
                and int(amount) != int(total_price)):
            log.warning("amount mismatch: reported {} expected {}",
                        amount, total_price)
            kind = FAILED
            fail_reason = REASON_AMOUNT_MISMATCH

        if kind == SUCCEEDED:
            result = await _confirm(db, transaction_id, ticket_id, log)
        else:
            result = await _fail(db, transaction_id, ticket_id,
                                 TICKET_FAILED, fail_reason)

    if result.applied:
        log.info("ticket {} -> {}", ticket_id, result.status)
    if result.applied and result.status == TICKET_CONFIRMED and notifier:
        await _notify(db, gated, notifier, ticket_id)
    return result


async def _confirm(db: AsyncSession, transaction_id: str, ticket_id: str,
                   log) -> OutcomeResult:
    try:
        async with timeit("outcome.confirm"):
            async with db.begin():
                row = await tickets.transition_from_pending(
                    db, transaction_id, TICKET_CONFIRMED
                )
                if row is not None:
                    await inventory.apply_confirmed_sale(
                        db, row["event_id"], row["quantity"],
                        row["total_price"],
                    )
    except InsufficientAvailability:
        # the whole transaction rolled back; the ticket is pending again
        await _fail(db, transaction_id, ticket_id, TICKET_FAILED,
                    REASON_SOLD_OUT)
        log.warning("paid but sold out; ticket {} failed, refund needed",
                    ticket_id)
        raise

    if row is None:
        # a concurrent report got there first
        _, status, _, reason = await _load(db, transaction_id)
        return OutcomeResult(transaction_id, ticket_id, status, False, reason)
    return OutcomeResult(transaction_id, ticket_id, TICKET_CONFIRMED, True)


async def _fail(db: AsyncSession, transaction_id: str, ticket_id: str,
                to_status: str, reason: str) -> OutcomeResult:
    async with db.begin():
        row = await tickets.transition_from_pending(
            db, transaction_id, to_status, reason=reason
        )
    if row is None:
        _, status, _, prior = await _load(db, transaction_id)
        return OutcomeResult(transaction_id, ticket_id, status, False, prior)
    return OutcomeResult(transaction_id, ticket_id, to_status, True, reason)


async def _notify(db: AsyncSession, gated: Gated, notifier: TicketNotifier,
                  ticket_id: str) -> None:
    async with gated():
        async with db.begin():
            t = await tickets.get_by_ticket_id(db, ticket_id)
            ev = await catalog.get_event(db, t.event_id)
            ticket_doc = tickets.ticket_to_dict(t)
            event_doc = catalog.event_to_dict(ev)
    try:
        async with timeit("notify.send_ticket"):
            await notifier.send_ticket(ticket_doc, event_doc)
    except ExternalServiceError as e:
        # the confirmation stands; delivery can be retried from the admin side
        logger.bind(ticket_id=ticket_id).error("{}", e.message)


async def handle_return(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    http: httpx.AsyncClient,
    transaction_id: str,
    *,
    notifier: Optional[TicketNotifier] = None,
) -> OutcomeResult:
    """
    Browser came back from the hosted checkout. Arriving here proves
    nothing, so a pending ticket is only resolved if the provider's status
    API says so; otherwise it stays pending for the webhook.
    """
    async with gated():
        ticket_id, status, _, reason = await _load(db, transaction_id)
    if status != TICKET_PENDING:
        return OutcomeResult(transaction_id, ticket_id, status, False, reason)

    try:
        async with timeit("provider.query_status"):
            kind = await adapter.query_status(http, transaction_id)
    except ExternalServiceError as e:
        logger.bind(transaction_id=transaction_id).warning(
            "status re-query failed: {}", e.message
        )
        kind = None
    if kind is None or kind == PENDING:
        return OutcomeResult(transaction_id, ticket_id, TICKET_PENDING, False)

    try:
        return await apply_outcome(db, gated, transaction_id, kind,
                                   notifier=notifier)
    except InsufficientAvailability:
        return OutcomeResult(transaction_id, ticket_id, TICKET_FAILED, True,
                             REASON_SOLD_OUT)


async def cancel_pending(
    db: AsyncSession, gated: Gated, transaction_id: str
) -> Optional[OutcomeResult]:
    """
    Buyer abandoned the checkout. The attempt is kept as `cancelled` for the
    audit trail. Returns None for an unknown transaction.
    """
    async with gated():
        try:
            ticket_id, status, _, reason = await _load(db, transaction_id)
        except TransactionNotFound:
            return None
        if status != TICKET_PENDING:
            return OutcomeResult(transaction_id, ticket_id, status, False,
                                 reason)
        return await _fail(db, transaction_id, ticket_id, TICKET_CANCELLED,
                           REASON_CANCELLED)


async def expire_stale_pending(
    db: AsyncSession, gated: Gated, *, older_than: float, limit: int = 500
) -> List[str]:
    """Fail pending attempts created before `older_than`. Returns their
    transaction ids."""
    async with gated():
        async with db.begin():
            stale = [
                t.transaction_id
                for t in await tickets.list_pending(
                    db, older_than=older_than, limit=limit
                )
            ]
        expired = []
        for txid in stale:
            async with db.begin():
                row = await tickets.transition_from_pending(
                    db, txid, TICKET_FAILED, reason=REASON_EXPIRED
                )
            if row is not None:
                expired.append(txid)
    if expired:
        logger.info("expired {} stale pending tickets", len(expired))
    return expired

