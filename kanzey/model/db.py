from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    JSON,
    ForeignKey,
    CheckConstraint,
    Index,
)


Base = declarative_base()

# Event.status
EVENT_DRAFT = "draft"
EVENT_PUBLISHED = "published"
EVENT_CANCELLED = "cancelled"
EVENT_STATUSES = (EVENT_DRAFT, EVENT_PUBLISHED, EVENT_CANCELLED)

EVENT_CATEGORIES = (
    "concert", "theatre", "sport", "festival", "conference", "spectacle",
    "formation",
)

# Ticket.status: pending -> confirmed | failed | cancelled (all terminal)
TICKET_PENDING = "pending"
TICKET_CONFIRMED = "confirmed"
TICKET_FAILED = "failed"
TICKET_CANCELLED = "cancelled"
TICKET_TERMINAL = (TICKET_CONFIRMED, TICKET_FAILED, TICKET_CANCELLED)


# ----------------------------
# ORM models
# ----------------------------
class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    short_description = Column(String, nullable=False, default="")
    date = Column(String, nullable=False)  # ISO date
    time = Column(String, nullable=False)  # "20:00"
    location = Column(String, nullable=False)
    address = Column(String, nullable=False)
    category = Column(String, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    image = Column(String, nullable=False, default="")

    price = Column(Integer, nullable=False)  # FCFA
    capacity = Column(Integer, nullable=False)

    # inventory counters, written by model.inventory only
    available_tickets = Column(Integer, nullable=False)
    tickets_sold = Column(Integer, nullable=False, default=0)
    revenue = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default=EVENT_PUBLISHED)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    organizer_id = Column(String, nullable=False)

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_events_price"),
        CheckConstraint("capacity >= 1", name="ck_events_capacity"),
        CheckConstraint(
            "available_tickets >= 0 AND available_tickets <= capacity",
            name="ck_events_available",
        ),
        CheckConstraint("tickets_sold >= 0", name="ck_events_sold"),
        Index("ix_events_status_created", "status", "created_at"),
    )


class Ticket(Base):
    __tablename__ = "tickets"
    ticket_id = Column(String, primary_key=True)
    transaction_id = Column(String, nullable=False, unique=True)
    event_id = Column(
        String, ForeignKey("events.id", ondelete="RESTRICT"), nullable=False
    )
    buyer_id = Column(String, nullable=False)
    buyer_email = Column(String, nullable=False, default="")
    buyer_name = Column(String, nullable=False, default="")

    quantity = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)  # fixed at creation
    currency = Column(String, nullable=False, default="FCFA")

    # pending | confirmed | failed | cancelled
    status = Column(String, nullable=False, default=TICKET_PENDING)
    payment_method = Column(String, nullable=False, default="intouch")
    payment_date = Column(Float, nullable=True)
    failure_reason = Column(String, nullable=True)
    qr_data = Column(String, nullable=False, default="")

    scanned = Column(Boolean, nullable=False, default=False)
    scanned_at = Column(Float, nullable=True)
    scanned_by = Column(String, nullable=True)

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_tickets_quantity"),
        CheckConstraint("total_price >= 0", name="ck_tickets_total"),
        Index("ix_tickets_buyer_created", "buyer_id", "created_at"),
        Index("ix_tickets_status_created", "status", "created_at"),
        Index("ix_tickets_event_status", "event_id", "status"),
    )


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    idempotency_key = Column(String, primary_key=True)
    transaction_id = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
