"""Ticket delivery after a confirmed payment.

Delivery itself (email rendering, QR image) belongs to an external mail
service; we hand it the ticket and event summary over HTTP.
"""

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .errors import ExternalServiceError


class TicketNotifier:
    def __init__(self, http: Optional[httpx.AsyncClient], notify_url: str = ""):
        self.http = http
        self.notify_url = notify_url

    async def send_ticket(
        self, ticket: Dict[str, Any], event: Dict[str, Any]
    ) -> bool:
        """
        Returns True if handed off, False if no mail service is configured.
        Raises ExternalServiceError when the hand-off fails.
        """
        log = logger.bind(ticket_id=ticket.get("ticketId"))
        if not self.notify_url or self.http is None:
            log.info("no NOTIFY_URL configured; ticket email skipped")
            return False
        try:
            r = await self.http.post(
                self.notify_url,
                json={"kind": "ticket", "ticket": ticket, "event": event},
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"ticket delivery failed: {e}")
        log.info("ticket email handed off")
        return True
