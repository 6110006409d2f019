from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from services.api.app.db.deps import get_db
from services.api.app.models.booking import BookingRecordOut, BookingSaveIn, BookingSaveOut
from services.api.app.models.order import ApiEnvelope
from services.api.app.services.booking_store import (
    InvalidOrderResponseError,
    OrderRetrieveFailedError,
    list_bookings,
    save_by_reference,
    save_order_response,
)
from services.api.app.services.order_api_base import OrderApiError
from services.api.app.services.order_api_factory import get_order_api
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/v1/bookings", response_model=list[BookingRecordOut])
def get_bookings(db: Session = Depends(get_db)) -> list[BookingRecordOut]:
    return [
        BookingRecordOut(
            reference_no=b.reference_no,
            create_date=b.create_date,
            status=b.status,
            pnr=b.pnr,
            name=b.name,
            fly_date=b.fly_date,
            airline=b.airline,
            fare=b.fare,
            currency=b.currency,
            issued=b.issued,
            passenger_type=b.passenger_type,
            route=b.route,
            created_by=b.created_by,
            updated_at=b.updated_at.isoformat(),
        )
        for b in list_bookings(db)
    ]


@router.post("/v1/bookings", response_model=BookingSaveOut)
async def save_booking(payload: BookingSaveIn, db: Session = Depends(get_db)) -> BookingSaveOut:
    """Save a booking from a full create response, or by reference after a fresh retrieve."""

    if payload.order_response:
        try:
            envelope = ApiEnvelope.model_validate(payload.order_response)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail="Invalid orderResponse") from e

        if envelope.order is not None and envelope.order.order_reference:
            record = save_order_response(db, envelope, created_by=payload.created_by)
            return BookingSaveOut(success=True, reference_no=record.reference_no)

    if payload.order_reference and payload.order_reference.strip():
        try:
            api = get_order_api()
        except (ValueError, OrderApiError) as e:
            raise HTTPException(status_code=500, detail=str(e)) from e

        try:
            record = await save_by_reference(db, api, payload.order_reference.strip())
        except OrderRetrieveFailedError as e:
            logger.error("OrderRetrieve for booking save failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e)) from e
        except InvalidOrderResponseError as e:
            raise HTTPException(status_code=400, detail=f"Invalid OrderRetrieve response: {e}") from e
        return BookingSaveOut(success=True, reference_no=record.reference_no)

    raise HTTPException(status_code=400, detail="Provide orderResponse or orderReference")
