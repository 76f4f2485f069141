"""Domain errors.

Every error carries an HTTP status and a stable code so the API layer can
map it without knowing the individual classes.
"""

from __future__ import annotations


class KanzeyError(Exception):
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# ----------------------------
# 404
# ----------------------------
class NotFound(KanzeyError):
    status_code = 404
    code = "NOT_FOUND"


class EventNotFound(NotFound):
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        super().__init__("Event not found")
        self.event_id = event_id


class TicketNotFound(NotFound):
    code = "TICKET_NOT_FOUND"

    def __init__(self, ticket_id: str):
        super().__init__("Ticket not found")
        self.ticket_id = ticket_id


class TransactionNotFound(NotFound):
    code = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        super().__init__("Transaction not found")
        self.transaction_id = transaction_id


# ----------------------------
# 409
# ----------------------------
class InvalidState(KanzeyError):
    status_code = 409
    code = "INVALID_STATE"


class EventNotPurchasable(InvalidState):
    code = "EVENT_NOT_PURCHASABLE"

    def __init__(self, event_id: str, status: str):
        super().__init__(f"Event is not open for sale (status={status})")
        self.event_id = event_id
        self.status = status


class InsufficientAvailability(KanzeyError):
    status_code = 409
    code = "INSUFFICIENT_AVAILABILITY"

    def __init__(self, event_id: str, requested: int,
                 available: int | None = None):
        if available is None:
            msg = "Not enough tickets available"
        else:
            msg = (f"Not enough tickets available "
                   f"(requested={requested}, available={available})")
        super().__init__(msg)
        self.event_id = event_id
        self.requested = requested
        self.available = available


# ----------------------------
# 400 / 401 / 403 / 502
# ----------------------------
class ValidationError(KanzeyError):
    status_code = 400
    code = "VALIDATION_ERROR"


class Unauthenticated(KanzeyError):
    status_code = 401
    code = "UNAUTHENTICATED"


class Forbidden(KanzeyError):
    status_code = 403
    code = "FORBIDDEN"


class ExternalServiceError(KanzeyError):
    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"
