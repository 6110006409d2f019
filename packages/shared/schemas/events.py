"""Shared event schema (v1).

The backend keeps an append-only event log per order. Clients read it to show what the
engine did (fare checks, confirmations, cancellations, booking saves).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    ORDER = "Order"
    OFFER = "Offer"
    CONFIRMATION = "Confirmation"
    BOOKING = "Booking"


class EventTypeV1(str, Enum):
    ORDER_RETRIEVED = "ORDER_RETRIEVED"
    ORDER_RETRIEVE_FAILED = "ORDER_RETRIEVE_FAILED"
    ORDER_POLLED = "ORDER_POLLED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_CANCEL_FAILED = "ORDER_CANCEL_FAILED"
    CONFIRMATION_STEP = "CONFIRMATION_STEP"
    FARE_UPDATE_DECLINED = "FARE_UPDATE_DECLINED"
    SELL_VALIDATED = "SELL_VALIDATED"
    SELL_PRICE_CHANGED = "SELL_PRICE_CHANGED"
    SELL_FAILED = "SELL_FAILED"
    SELL_ABORTED = "SELL_ABORTED"
    ORDER_CREATED = "ORDER_CREATED"
    CREATE_FAILED = "CREATE_FAILED"
    BOOKING_SAVED = "BOOKING_SAVED"
    BOOKING_SAVE_FAILED = "BOOKING_SAVE_FAILED"


class EventV1(BaseModel):
    id: str

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
