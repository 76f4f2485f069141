from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import httpx
import pydantic
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.responses import ORJSONResponse, RedirectResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_303_SEE_OTHER

from . import config, outcomes, purchase, verification
from .auth import Identity, current_user, require_admin, require_staff
from .errors import (
    Forbidden, KanzeyError, TicketNotFound, TransactionNotFound,
    ValidationError,
)
from .helpers import extract_ticket_id, now_ts, to_iso
from .infra import timings
from .infra.logs import setup_logging
from .infra.sql import Gated, make_async_engine
from .infra.timings import timeit
from .model import catalog, inventory, tickets
from .model.db import Base, TICKET_CONFIRMED, TICKET_PENDING
from .model.webhookevents import WebhookEventStore, new_store
from .notify import TicketNotifier
from .payments import InTouchPay, PaymentAdapter
from .schemas import (
    EventCreate, EventUpdate, InitiatePaymentRequest, PaymentCallback,
    VerifyRequest,
)

app = FastAPI(
    title="Kanzey.co",
    default_response_class=ORJSONResponse,
)


# ----------------------------
# Errors
# ----------------------------
@app.exception_handler(KanzeyError)
async def _kanzey_error(request: Request, exc: KanzeyError):
    log = logger.bind(path=request.url.path, code=exc.code)
    if exc.status_code >= 500:
        log.error("{}", exc.message)
    else:
        log.info("{}", exc.message)
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "code": exc.code, "message": exc.message},
    )


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.bind(path=request.url.path).opt(exception=exc).error(
        "unhandled error"
    )
    return ORJSONResponse(
        status_code=500,
        content={"success": False, "code": "INTERNAL",
                 "message": "Internal server error"},
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    setup_logging(config.LOG_LEVEL)
    logger.info("Kanzey.co is starting up...")
    logger.info("   - Database:            {}",
                config.DATABASE_URL.split("@")[-1])
    logger.info("   - Webhook log backend: {}", config.WEBHOOK_LOG_BACKEND)
    logger.info("   - Frontend URL:        {}", config.FRONTEND_URL)


@app.on_event("startup")
async def _db_init():
    gate_limit = (int(config.DB_GATE_LIMIT)
                  if config.DB_GATE_LIMIT else None)
    engine, SessionAsync, _, gated = make_async_engine(
        config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        gate_limit=gate_limit,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.gated = gated


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=config.HTTP_TIMEOUT,
        limits=httpx.Limits(
            max_connections=128, max_keepalive_connections=64
        ),
    )
    app.state.adapter = InTouchPay(
        redirect_url=config.INTOUCH_REDIRECT_URL,
        merchant_id=config.INTOUCH_MERCHANT_ID,
        secret_key=config.INTOUCH_SECRET_KEY,
        api_base_url=config.API_BASE_URL,
        status_url=config.INTOUCH_STATUS_URL,
        webhook_secret=config.INTOUCH_WEBHOOK_SECRET,
        service_code=config.INTOUCH_SERVICE_CODE,
    )
    app.state.notifier = TicketNotifier(app.state.http, config.NOTIFY_URL)


@app.on_event("startup")
async def _redis_start():
    if config.WEBHOOK_LOG_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=config.REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()
        app.state.engine = None


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.SessionAsync() as session:
        yield session


def get_gated(request: Request) -> Gated:
    return request.app.state.gated


def payment_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.adapter


def ticket_notifier(request: Request) -> TicketNotifier:
    return request.app.state.notifier


async def webhook_log(request: Request) -> WebhookEventStore:
    state = request.app.state
    if config.WEBHOOK_LOG_BACKEND == "redis":
        yield new_store(backend="redis", r=state.redis,
                        ttl_seconds=config.WEBHOOK_KEY_TTL_SECONDS)
    else:
        async with state.SessionAsync() as session:
            yield new_store(backend="sql", db=session, gated=state.gated)


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{config.FRONTEND_URL.rstrip('/')}{path}",
        status_code=HTTP_303_SEE_OTHER,
    )


def _require_owner(user: Identity, owner_id: str, what: str) -> None:
    if user.id != owner_id and not user.is_admin:
        raise Forbidden(f"Not allowed to modify this {what}")


async def _ticket_status(db: AsyncSession, gated: Gated,
                         transaction_id: str) -> str:
    async with gated():
        async with db.begin():
            t = await tickets.get_by_transaction(db, transaction_id)
            if t is None:
                raise TransactionNotFound(transaction_id)
            return t.status


# ----------------------------
# Health
# ----------------------------
@app.get("/api/health")
async def health():
    return {
        "success": True,
        "message": "Kanzey.co server up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ----------------------------
# Events
# ----------------------------
@app.get("/api/events")
async def list_events(
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    status: str = "published",
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            events = await catalog.list_events(
                db, status=status, category=category, featured=featured,
            )
            data = [catalog.event_to_dict(ev) for ev in events]
    return {"success": True, "data": data}


@app.get("/api/events/{event_id}")
async def get_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            ev = await catalog.get_event(db, event_id)
            data = catalog.event_to_dict(ev)
    return {"success": True, "data": data}


@app.post("/api/events", status_code=201)
async def create_event(
    payload: EventCreate,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            ev = await catalog.create_event(db, payload.model_dump(), user.id)
            data = catalog.event_to_dict(ev)
    logger.bind(event_id=data["id"], organizer=user.id).info("event created")
    return {"success": True, "message": "Event created", "data": data}


@app.put("/api/events/{event_id}")
async def update_event(
    event_id: str,
    payload: EventUpdate,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            ev = await catalog.get_event(db, event_id)
            _require_owner(user, ev.organizer_id, "event")
            ev = await catalog.update_event(
                db, event_id,
                # null means "leave as is"; every stored field is NOT NULL
                payload.model_dump(exclude_unset=True, exclude_none=True),
            )
            data = catalog.event_to_dict(ev)
    return {"success": True, "message": "Event updated", "data": data}


@app.delete("/api/events/{event_id}")
async def delete_event(
    event_id: str,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            ev = await catalog.get_event(db, event_id)
            _require_owner(user, ev.organizer_id, "event")
            await catalog.delete_event(db, event_id)
    return {"success": True, "message": "Event deleted"}


@app.get("/api/events/{event_id}/inventory")
async def event_inventory(
    event_id: str,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            ev = await catalog.get_event(db, event_id)
            _require_owner(user, ev.organizer_id, "event")
            snap = await inventory.inventory_snapshot(db, event_id)
    return {"success": True, "data": snap}


# ----------------------------
# Payment: initiate
# ----------------------------
@app.post("/api/payment/initiate")
async def initiate_payment(
    payload: InitiatePaymentRequest,
    user: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
    adapter: PaymentAdapter = Depends(payment_adapter),
):
    async with timeit("api.initiate"):
        out = await purchase.initiate_purchase(
            db, gated, adapter,
            event_id=payload.event_id,
            quantity=payload.quantity,
            buyer=user,
            currency=config.CURRENCY,
            payment_method=config.PAYMENT_METHOD,
            qr_base_url=config.QR_CODE_BASE_URL,
            max_per_order=config.MAX_TICKETS_PER_ORDER,
        )
    return {
        "success": True,
        "message": "Redirecting to payment",
        "paymentUrl": out["redirect_url"],
        "transactionId": out["transaction_id"],
        "ticketId": out["ticket_id"],
        "amount": out["amount"],
        "currency": out["currency"],
    }


# ----------------------------
# Payment: browser return / cancel
# ----------------------------
@app.get("/api/payment/success")
async def payment_return(
    request: Request,
    transaction: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
    adapter: PaymentAdapter = Depends(payment_adapter),
    notifier: TicketNotifier = Depends(ticket_notifier),
):
    if not transaction:
        return _redirect("/payment/error")
    try:
        result = await outcomes.handle_return(
            db, gated, adapter, request.app.state.http, transaction,
            notifier=notifier,
        )
    except TransactionNotFound:
        return _redirect("/payment/error")

    if result.status == TICKET_CONFIRMED:
        return _redirect(f"/payment/success?ticket={result.ticket_id}")
    if result.status == TICKET_PENDING:
        return _redirect(f"/payment/processing?transaction={transaction}")
    return _redirect(f"/payment/error?transaction={transaction}")


@app.get("/api/payment/cancel")
async def payment_cancel(
    transaction: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    if transaction:
        await outcomes.cancel_pending(db, gated, transaction)
    return _redirect("/payment/cancel")


# ----------------------------
# Payment: provider webhook
# ----------------------------
@app.post("/api/payment/callback")
async def payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
    adapter: PaymentAdapter = Depends(payment_adapter),
    notifier: TicketNotifier = Depends(ticket_notifier),
    log: WebhookEventStore = Depends(webhook_log),
):
    payload = await request.body()
    event = adapter.verify_webhook(payload, dict(request.headers))
    try:
        cb = PaymentCallback.model_validate(event)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid callback body: {e.errors()}")

    logger.bind(transaction_id=cb.transaction_id).info(
        "callback received: status={} amount={}", cb.status, cb.amount
    )

    idem = cb.idempotency_key
    if idem:
        async with timeit("webhooklog.seen"):
            if await log.seen(idem):
                return {
                    "success": True,
                    "idempotent": True,
                    "ticketStatus": await _ticket_status(
                        db, gated, cb.transaction_id
                    ),
                }

    result = await outcomes.apply_outcome(
        db, gated, cb.transaction_id, adapter.event_kind(cb.status),
        amount=cb.amount, notifier=notifier,
    )

    if idem:
        async with timeit("webhooklog.remember"):
            await log.remember(idem, cb.transaction_id)

    return {
        "success": True,
        "idempotent": result.idempotent,
        "ticketStatus": result.status,
    }


# ----------------------------
# Payment: status (polled by the success page)
# ----------------------------
@app.get("/api/payment/status/{transaction_id}")
async def payment_status(
    transaction_id: str,
    user: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            t = await tickets.get_by_transaction(db, transaction_id)
            if t is None:
                raise TransactionNotFound(transaction_id)
            if t.buyer_id != user.id and not user.is_staff:
                raise Forbidden("Not your transaction")
            data = tickets.ticket_to_dict(t)
    return {"success": True, "data": data}


# ----------------------------
# Tickets
# ----------------------------
@app.get("/api/tickets/my")
async def my_tickets(
    limit: int = 100,
    user: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            rows = await tickets.list_for_buyer(
                db, user.id, limit=max(1, min(limit, 500))
            )
            data = [tickets.ticket_to_dict(t) for t in rows]
    return {"success": True, "data": data}


@app.get("/api/tickets/verify/{ticket_id}")
async def verify_ticket(
    ticket_id: str,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    result = await verification.check(db, gated, ticket_id)
    return {"success": True, "validationResult": result}


@app.post("/api/tickets/verify")
async def verify_scanned(
    payload: VerifyRequest,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    if payload.qr_data:
        ticket_id = extract_ticket_id(payload.qr_data)
        if not ticket_id:
            raise ValidationError("Invalid QR code")
    elif payload.ticket_id and payload.ticket_id.strip():
        ticket_id = payload.ticket_id.strip()
    else:
        raise ValidationError("ticketId or qrData is required")
    result = await verification.check(db, gated, ticket_id)
    return {"success": True, "validationResult": result}


@app.post("/api/tickets/verify/{ticket_id}/admit")
async def admit_ticket(
    ticket_id: str,
    user: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    result = await verification.admit(db, gated, ticket_id, user.id)
    return {"success": True, "validationResult": result}


@app.get("/api/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    user: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            t = await tickets.get_by_ticket_id(db, ticket_id)
            if t is None or (t.buyer_id != user.id and not user.is_staff):
                # don't reveal other buyers' ticket ids
                raise TicketNotFound(ticket_id)
            data = tickets.ticket_to_dict(t)
    return {"success": True, "data": data}


# ----------------------------
# Admin
# ----------------------------
@app.get("/api/admin/pending")
async def api_pending(
    limit: int = 100,
    user: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    now = now_ts()
    async with gated():
        async with db.begin():
            total = await tickets.count_pending(db)
            rows = await tickets.list_pending(
                db, limit=max(1, min(limit, 500))
            )
            items = [
                {
                    "transactionId": t.transaction_id,
                    "ticketId": t.ticket_id,
                    "event": t.event_id,
                    "user": t.buyer_id,
                    "quantity": t.quantity,
                    "amount": t.total_price,
                    "currency": t.currency,
                    "createdAt": to_iso(t.created_at),
                    "ageMs": int(max(0.0, now - t.created_at) * 1000),
                }
                for t in rows
            ]
    return {"items": items, "total": total, "limit": limit}


@app.get("/api/admin/dashboard")
async def api_dashboard(
    user: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    async with gated():
        async with db.begin():
            data = await catalog.dashboard(db)
    return {"success": True, "data": data}


@app.post("/api/admin/pending/expire")
async def api_expire_pending(
    older_than_seconds: Optional[int] = None,
    user: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gated: Gated = Depends(get_gated),
):
    ttl = (older_than_seconds if older_than_seconds is not None
           else config.PENDING_TTL_SECONDS)
    if ttl < 0:
        raise ValidationError("older_than_seconds must be >= 0")
    expired = await outcomes.expire_stale_pending(
        db, gated, older_than=now_ts() - ttl
    )
    return {"success": True, "expired": expired, "count": len(expired)}


@app.get("/api/admin/timings")
async def api_timings(user: Identity = Depends(require_admin)):
    return {"success": True, "data": timings.summary()}
