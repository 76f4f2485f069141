from abc import ABC, abstractmethod
from typing import Optional, TypedDict
from urllib.parse import urlencode
import base64
import hashlib
import hmac
import json

import httpx
from loguru import logger

from .errors import ExternalServiceError, Unauthenticated, ValidationError
from .helpers import ct_equal

# normalized outcome kinds
SUCCEEDED = "succeeded"
FAILED = "failed"
PENDING = "pending"

_SUCCESS_CODES = {"SUCCESS", "SUCCESSFUL", "COMPLETED"}
_PENDING_CODES = {"PENDING", "INITIATED"}

SIGNATURE_HEADER = "x-intouch-signature"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    transaction_id: str
    redirect_url: str


class PaymentAdapter(ABC):
    @abstractmethod
    def create_session(
            self, transaction_id: str, amount: int, currency: str
    ) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "succeeded" | "failed" | "pending"
    @abstractmethod
    def event_kind(self, status: Optional[str]) -> str: ...

    # None when the provider offers no status lookup
    @abstractmethod
    async def query_status(
            self, http: httpx.AsyncClient, transaction_id: str
    ) -> Optional[str]: ...


def _hmac_b64(secret: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


# ----------------------------
# InTouch implementation
# ----------------------------
class InTouchPay(PaymentAdapter):
    """
    Hosted mobile-money checkout. The buyer is redirected to `redirect_url`
    with the order in the query string; InTouch later POSTs the outcome to
    our callback and sends the browser back to return_url / cancel_url.
    """

    def __init__(
        self,
        *,
        redirect_url: str,
        merchant_id: str,
        secret_key: str,
        api_base_url: str,
        status_url: str = "",
        webhook_secret: str = "",
        service_code: str = "PAIEMENTMARCHANDOMQRCODE",
    ) -> None:
        self.redirect_url = redirect_url
        self.merchant_id = merchant_id
        self.secret_key = secret_key
        self.api_base_url = api_base_url.rstrip("/")
        self.status_url = status_url
        self.webhook_secret = webhook_secret
        self.service_code = service_code

    def request_signature(self, transaction_id: str, amount: int) -> str:
        # the merchant secret never leaves the server; only this MAC does
        msg = f"{self.merchant_id}:{transaction_id}:{amount}".encode()
        return hmac.new(
            self.secret_key.encode(), msg, hashlib.sha256
        ).hexdigest()

    def create_session(
            self, transaction_id: str, amount: int, currency: str
    ) -> CreateSessionResult:
        base = f"{self.api_base_url}/api/payment"
        params = {
            "merchant_id": self.merchant_id,
            "service_code": self.service_code,
            "amount": str(amount),
            "currency": currency,
            "transaction_id": transaction_id,
            "return_url": f"{base}/success?transaction={transaction_id}",
            "cancel_url": f"{base}/cancel?transaction={transaction_id}",
            "callback_url": f"{base}/callback",
            "signature": self.request_signature(transaction_id, amount),
        }
        return {
            "transaction_id": transaction_id,
            "redirect_url": f"{self.redirect_url}?{urlencode(params)}",
        }

    def sign_webhook(self, payload: bytes) -> str:
        return _hmac_b64(self.webhook_secret, payload)

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        if self.webhook_secret:
            sig = headers.get(SIGNATURE_HEADER)
            expected = self.sign_webhook(payload)
            if not sig or not ct_equal(expected, sig):
                raise Unauthenticated("Invalid webhook signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("Invalid JSON")
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return event

    def event_kind(self, status: Optional[str]) -> str:
        code = (status or "").strip().upper()
        if code in _SUCCESS_CODES:
            return SUCCEEDED
        if code in _PENDING_CODES:
            return PENDING
        return FAILED

    async def query_status(
            self, http: httpx.AsyncClient, transaction_id: str
    ) -> Optional[str]:
        if not self.status_url:
            return None
        params = {
            "merchant_id": self.merchant_id,
            "transaction_id": transaction_id,
            "signature": self.request_signature(transaction_id, 0),
        }
        try:
            r = await http.get(self.status_url, params=params)
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPError as e:
            logger.warning("intouch status query failed for {}: {}",
                           transaction_id, e)
            raise ExternalServiceError("Payment provider unreachable")
        except ValueError:
            raise ExternalServiceError("Malformed payment provider response")

        if not isinstance(body, dict) or "status" not in body:
            raise ExternalServiceError("Malformed payment provider response")
        return self.event_kind(body.get("status"))
