import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from kanzey.errors import ExternalServiceError, Unauthenticated, ValidationError
from kanzey.payments import (
    FAILED, PENDING, SIGNATURE_HEADER, SUCCEEDED, InTouchPay,
)

from .conftest import WEBHOOK_SECRET


def _sign(body: bytes) -> str:
    mac = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


def test_create_session_builds_signed_redirect(adapter):
    out = adapter.create_session("KANZ-1-abc", 15000, "FCFA")
    assert out["transaction_id"] == "KANZ-1-abc"

    url = urlparse(out["redirect_url"])
    assert f"{url.scheme}://{url.netloc}{url.path}" == \
        "https://pay.example.com/checkout"
    q = {k: v[0] for k, v in parse_qs(url.query).items()}
    assert q["amount"] == "15000"
    assert q["currency"] == "FCFA"
    assert q["transaction_id"] == "KANZ-1-abc"
    assert q["merchant_id"] == "MERCHANT-1"
    assert q["return_url"] == \
        "https://api.kanzey.test/api/payment/success?transaction=KANZ-1-abc"
    assert q["cancel_url"] == \
        "https://api.kanzey.test/api/payment/cancel?transaction=KANZ-1-abc"
    assert q["callback_url"] == "https://api.kanzey.test/api/payment/callback"
    assert q["signature"] == adapter.request_signature("KANZ-1-abc", 15000)


def test_secret_key_never_in_redirect(adapter):
    out = adapter.create_session("KANZ-1-abc", 15000, "FCFA")
    assert "merchant-secret" not in out["redirect_url"]


@pytest.mark.parametrize("status,kind", [
    ("SUCCESS", SUCCEEDED),
    ("successful", SUCCEEDED),
    ("COMPLETED", SUCCEEDED),
    ("PENDING", PENDING),
    ("INITIATED", PENDING),
    ("FAILED", FAILED),
    ("CANCELLED", FAILED),
    ("", FAILED),
    (None, FAILED),
])
def test_event_kind(adapter, status, kind):
    assert adapter.event_kind(status) == kind


def test_verify_webhook_accepts_valid_signature(adapter):
    body = json.dumps({"idFromClient": "KANZ-1", "status": "SUCCESS"}).encode()
    event = adapter.verify_webhook(body, {SIGNATURE_HEADER: _sign(body)})
    assert event["idFromClient"] == "KANZ-1"


def test_verify_webhook_rejects_bad_signature(adapter):
    body = b'{"idFromClient": "KANZ-1", "status": "SUCCESS"}'
    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {SIGNATURE_HEADER: "bogus"})
    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {})


def test_verify_webhook_rejects_tampered_body(adapter):
    body = b'{"idFromClient": "KANZ-1", "status": "FAILED"}'
    sig = _sign(body)
    tampered = body.replace(b"FAILED", b"SUCCESS")
    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(tampered, {SIGNATURE_HEADER: sig})


def test_verify_webhook_requires_json_object(adapter):
    for body in (b"not json", b"[1, 2]"):
        with pytest.raises(ValidationError):
            adapter.verify_webhook(body, {SIGNATURE_HEADER: _sign(body)})


def test_verify_webhook_without_secret_skips_signature():
    a = InTouchPay(redirect_url="https://pay", merchant_id="m",
                   secret_key="s", api_base_url="https://api")
    assert a.verify_webhook(b'{"status": "SUCCESS"}', {}) == \
        {"status": "SUCCESS"}


def _adapter_with_status_url(adapter):
    adapter.status_url = "https://pay.example.com/status"
    return adapter


@pytest.mark.asyncio
async def test_query_status_without_url_returns_none(adapter):
    async with httpx.AsyncClient() as http:
        assert await adapter.query_status(http, "KANZ-1") is None


@pytest.mark.asyncio
async def test_query_status_maps_provider_status(adapter):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"status": "SUCCESSFUL"})

    a = _adapter_with_status_url(adapter)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        assert await a.query_status(http, "KANZ-1") == SUCCEEDED
    assert seen["params"]["transaction_id"] == "KANZ-1"
    assert seen["params"]["merchant_id"] == "MERCHANT-1"


@pytest.mark.asyncio
async def test_query_status_provider_error(adapter):
    a = _adapter_with_status_url(adapter)
    transport = httpx.MockTransport(lambda req: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as http:
        with pytest.raises(ExternalServiceError):
            await a.query_status(http, "KANZ-1")


@pytest.mark.asyncio
async def test_query_status_malformed_response(adapter):
    a = _adapter_with_status_url(adapter)
    for resp in (httpx.Response(200, text="<html>"),
                 httpx.Response(200, json={"code": 0})):
        transport = httpx.MockTransport(lambda req, r=resp: r)
        async with httpx.AsyncClient(transport=transport) as http:
            with pytest.raises(ExternalServiceError):
                await a.query_status(http, "KANZ-1")
