"""Purchase initiation: "I want N tickets to event E"."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Identity
from .errors import InsufficientAvailability, ValidationError
from .helpers import new_ticket_id, new_transaction_id
from .infra.sql import Gated
from .infra.timings import timeit
from .model import inventory, tickets
from .payments import PaymentAdapter

# id collisions are practically impossible; the unique constraints catch them
_MINT_ATTEMPTS = 3


async def initiate_purchase(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    *,
    event_id: str,
    quantity: int,
    buyer: Identity,
    currency: str,
    payment_method: str,
    qr_base_url: str,
    max_per_order: int,
) -> Dict[str, Any]:
    """
    Check availability (read only, nothing is held), price the order at the
    event's current price, persist a pending ticket and return where to send
    the buyer to pay. Inventory is only adjusted once payment is confirmed.
    """
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")
    if quantity > max_per_order:
        raise ValidationError(
            f"at most {max_per_order} tickets per order"
        )

    log = logger.bind(event_id=event_id, buyer_id=buyer.id)

    for attempt in range(_MINT_ATTEMPTS):
        transaction_id = new_transaction_id()
        ticket_id = new_ticket_id()
        try:
            async with gated():
                async with db.begin():
                    async with timeit("inventory.availability"):
                        avail = await inventory.get_availability(db, event_id)
                    if quantity > avail["available_tickets"]:
                        raise InsufficientAvailability(
                            event_id, quantity, avail["available_tickets"]
                        )
                    total_amount = avail["price"] * quantity
                    session = adapter.create_session(
                        transaction_id, total_amount, currency
                    )
                    async with timeit("tickets.create_pending"):
                        await tickets.create_pending(
                            db,
                            ticket_id=ticket_id,
                            transaction_id=transaction_id,
                            event_id=event_id,
                            buyer_id=buyer.id,
                            buyer_email=buyer.email,
                            buyer_name=buyer.name,
                            quantity=quantity,
                            total_price=total_amount,
                            currency=currency,
                            payment_method=payment_method,
                            qr_data=f"{qr_base_url.rstrip('/')}/{ticket_id}",
                        )
        except IntegrityError:
            log.warning("identifier collision, minting again (attempt {})",
                        attempt + 1)
            continue

        log.info("pending ticket {} created, transaction {}, amount {}",
                 ticket_id, transaction_id, total_amount)
        return {
            "transaction_id": transaction_id,
            "ticket_id": ticket_id,
            "redirect_url": session["redirect_url"],
            "amount": total_amount,
            "currency": currency,
            "quantity": quantity,
        }

    raise RuntimeError("could not mint unique purchase identifiers")
