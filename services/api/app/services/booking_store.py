"""Booking history persistence.

Booking rows are keyed by order reference, so saving the same order twice updates it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from services.api.app.db.models import BookingRecord
from services.api.app.models.order import ApiEnvelope, Order
from services.api.app.services.order_api_base import (
    OrderApi,
    OrderApiTransportError,
    best_error_message,
)
from services.api.app.services.status import booking_status
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

GUEST = "Guest"
_PLACEHOLDER = "–"
_PAX_LABELS = {"ADT": "Adult", "CHD": "Child", "INF": "Infant"}


class BookingStoreError(Exception):
    """Base class for booking persistence errors."""


class InvalidOrderResponseError(BookingStoreError):
    pass


class OrderRetrieveFailedError(BookingStoreError):
    def __init__(self, order_reference: str, reason: str) -> None:
        super().__init__(f"OrderRetrieve failed for {order_reference}: {reason}")
        self.order_reference = order_reference
        self.reason = reason


def _segments(order: Order) -> list[dict[str, Any]]:
    item = order.first_item
    if item is None:
        return []
    return [s.get("paxSegment") or {} for s in item.pax_segment_list]


def _passenger_type(order: Order) -> str:
    counts: dict[str, int] = {}
    for pax in order.pax_list:
        ptc = str(pax.get("ptc") or "")
        label = _PAX_LABELS.get(ptc, ptc)
        counts[label] = counts.get(label, 0) + 1
    return "+".join(f"{label} {n}" for label, n in counts.items())


def _lead_name(order: Order) -> str:
    if not order.pax_list:
        return _PLACEHOLDER

    individual = order.pax_list[0].get("individual") or {}
    parts = [individual.get("givenName"), individual.get("surname")]
    name = " ".join(p for p in parts if p).strip() or _PLACEHOLDER
    if len(order.pax_list) > 1:
        return f"{name.upper()} (+{len(order.pax_list) - 1})"
    return name.upper()


def _route(order: Order) -> str:
    legs = []
    for segment in _segments(order):
        dep = (segment.get("departure") or {}).get("iatA_LocationCode") or ""
        arr = (segment.get("arrival") or {}).get("iatA_LocationCode") or ""
        legs.append(f"{dep}-{arr}")
    return ",".join(legs) or _PLACEHOLDER


def order_to_booking_fields(
    order: Order, *, responded_on: str, created_by: str | None = None
) -> dict[str, Any]:
    """Flatten an order response into booking-history columns."""

    first = order.first_segment()
    item = order.first_item

    fly_date = (first.get("departure") or {}).get("aircraftScheduledDateTime") or responded_on[:10]
    airline = (
        (item.validating_carrier if item else None)
        or (first.get("marketingCarrierInfo") or {}).get("carrierDesigCode")
        or _PLACEHOLDER
    )
    pnr = first.get("airlinePNR") or (order.model_extra or {}).get("pnr") or None

    return {
        "reference_no": order.order_reference,
        "create_date": responded_on,
        "status": booking_status(order.order_status or "Pending"),
        "pnr": pnr,
        "name": _lead_name(order),
        "fly_date": fly_date,
        "airline": airline,
        "fare": order.total_payable or 0,
        "currency": order.currency,
        "issued": responded_on,
        "passenger_type": _passenger_type(order),
        "route": _route(order),
        "created_by": created_by or GUEST,
        "order_payload_json": order.to_payload(),
    }


def _upsert(db: Session, fields: dict[str, Any], *, keep_origin: bool) -> BookingRecord:
    row = db.get(BookingRecord, fields["reference_no"])
    if row is None:
        row = BookingRecord(**fields)
        db.add(row)
    else:
        for name, value in fields.items():
            if keep_origin and name in {"create_date", "created_by"}:
                continue
            setattr(row, name, value)
    row.updated_at = datetime.utcnow()

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return row


def save_order_response(
    db: Session, envelope: ApiEnvelope, *, created_by: str | None = None
) -> BookingRecord:
    """Rich save: the full create response is on hand."""

    order = envelope.order
    if order is None or not order.order_reference:
        raise InvalidOrderResponseError("orderResponse carries no orderReference")

    responded_on = envelope.responded_on or datetime.utcnow().isoformat()
    fields = order_to_booking_fields(order, responded_on=responded_on, created_by=created_by)
    return _upsert(db, fields, keep_origin=False)


def ensure_booking(
    db: Session, envelope: ApiEnvelope, *, created_by: str | None = None
) -> BookingRecord:
    """Upsert the history row for a displayed order, keeping the original creator and date."""

    order = envelope.order
    if order is None or not order.order_reference:
        raise InvalidOrderResponseError("order response carries no orderReference")

    responded_on = envelope.responded_on or datetime.utcnow().isoformat()
    fields = order_to_booking_fields(order, responded_on=responded_on, created_by=created_by)
    return _upsert(db, fields, keep_origin=True)


async def save_by_reference(db: Session, api: OrderApi, order_reference: str) -> BookingRecord:
    """Minimal save: only the reference is known, so the order is fetched first."""

    try:
        envelope = await api.retrieve(order_reference)
    except OrderApiTransportError as e:
        raise OrderRetrieveFailedError(order_reference, e.reason) from e

    order = envelope.order
    if order is None or not order.order_reference:
        fallback = (
            "Order not found or no longer available"
            if not envelope.success
            else "No order data returned"
        )
        raise InvalidOrderResponseError(best_error_message(envelope, fallback))

    existing = db.get(BookingRecord, order.order_reference)
    responded_on = envelope.responded_on or datetime.utcnow().isoformat()
    fields = order_to_booking_fields(
        order,
        responded_on=responded_on,
        created_by=existing.created_by if existing is not None else None,
    )
    return _upsert(db, fields, keep_origin=True)


def list_bookings(db: Session, limit: int = 300) -> list[BookingRecord]:
    return db.query(BookingRecord).order_by(BookingRecord.updated_at.desc()).limit(limit).all()


class DbBookingSink:
    """Booking persistence used by the sell pipeline after a successful create."""

    def __init__(self, db: Session, api: OrderApi) -> None:
        self._db = db
        self._api = api

    async def save_rich(self, envelope: ApiEnvelope, created_by: str | None) -> None:
        record = save_order_response(self._db, envelope, created_by=created_by)
        logger.info("saved booking %s (rich)", record.reference_no)

    async def save_minimal(self, order_reference: str) -> None:
        record = await save_by_reference(self._db, self._api, order_reference)
        logger.info("saved booking %s (minimal)", record.reference_no)
