"""Request bodies.

Field names follow the camelCase wire format the frontend already speaks;
python code reads the snake_case attributes.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .model.db import EVENT_CATEGORIES, EVENT_STATUSES

Category = Literal[EVENT_CATEGORIES]
EventStatus = Literal[EVENT_STATUSES]


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InitiatePaymentRequest(_Wire):
    event_id: str = Field(alias="eventId", min_length=1)
    quantity: int = Field(default=1, ge=1)


class PaymentCallback(_Wire):
    """Server-to-server notification from InTouch."""

    transaction_id: str = Field(alias="idFromClient", min_length=1)
    status: str
    amount: Optional[int] = None
    idempotency_key: Optional[str] = Field(default=None,
                                           alias="idempotencyKey")


class VerifyRequest(_Wire):
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    qr_data: Optional[str] = Field(default=None, alias="qrData")


def _split_tags(v):
    if isinstance(v, str):
        return [t.strip() for t in v.split(",") if t.strip()]
    if isinstance(v, list):
        return [str(t).strip() for t in v if t and str(t).strip()]
    return v


class EventCreate(_Wire):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    short_description: str = Field(default="", alias="shortDescription")
    date: str = Field(min_length=1)
    time: str = Field(min_length=1)
    location: str = Field(min_length=1)
    address: str = Field(min_length=1)
    price: int = Field(ge=0)
    capacity: int = Field(ge=1)
    category: Category
    is_featured: bool = Field(default=False, alias="isFeatured")
    status: EventStatus = "published"
    tags: List[str] = Field(default_factory=list)
    image: str = ""

    _tags = field_validator("tags", mode="before")(_split_tags)

    @field_validator("title", "description", "location", "address")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class EventUpdate(_Wire):
    title: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None,
                                             alias="shortDescription")
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    capacity: Optional[int] = Field(default=None, ge=1)
    category: Optional[Category] = None
    is_featured: Optional[bool] = Field(default=None, alias="isFeatured")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    status: Optional[EventStatus] = None
    tags: Optional[List[str]] = None
    image: Optional[str] = None

    _tags = field_validator("tags", mode="before")(_split_tags)
