import time
import secrets
from datetime import datetime, timezone
import hmac
from typing import Optional
from urllib.parse import urlparse


TRANSACTION_PREFIX = "KANZ"
TICKET_PREFIX = "TKT-"


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# ----------------------------
# Identifiers
# ----------------------------
def _ms() -> int:
    return time.time_ns() // 1_000_000


def new_transaction_id() -> str:
    # KANZ-<ms>-<10 hex>
    return f"{TRANSACTION_PREFIX}-{_ms()}-{secrets.token_hex(5)}"


def new_ticket_id() -> str:
    # TKT-<ms>-<8 HEX>
    return f"{TICKET_PREFIX}{_ms()}-{secrets.token_hex(4).upper()}"


def new_event_id() -> str:
    return f"evt_{secrets.token_hex(12)}"


# ----------------------------
# QR payloads
# ----------------------------
def extract_ticket_id(payload: Optional[str]) -> Optional[str]:
    """
    Pull a ticket id out of whatever the door scanner decoded.

    Accepted shapes:
      - https://kanzey.co/verify-ticket/TKT-...
      - any URL whose last path segment starts with TKT-
      - TKT-... as-is
    """
    if not payload:
        return None
    data = payload.strip()
    if "/verify-ticket/" in data:
        tail = data.split("/verify-ticket/", 1)[1]
        tail = tail.split("?", 1)[0].split("#", 1)[0].strip("/")
        return tail or None
    if data.startswith(TICKET_PREFIX):
        return data
    parsed = urlparse(data)
    if parsed.scheme and parsed.netloc:
        last = parsed.path.rstrip("/").split("/")[-1]
        return last if last.startswith(TICKET_PREFIX) else None
    return None
