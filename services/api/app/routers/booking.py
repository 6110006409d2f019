from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_db, require_scope
from services.api.app.models.booking import (
    FareComparisonOut,
    RejectedSsrOut,
    SellDraftIn,
    SellOutcomeOut,
)
from services.api.app.services.booking_pipeline import (
    BookingContext,
    BookingInFlightError,
    NoPendingPriceChangeError,
    SellOutcome,
    pipelines,
)
from services.api.app.services.booking_store import DbBookingSink
from services.api.app.services.event_log import log_event
from services.api.app.services.local_state import LocalState
from services.api.app.services.order_api_base import OrderApi, OrderApiError
from services.api.app.services.order_api_factory import get_order_api
from services.api.app.services.traveller_sync import sync_travellers
from sqlalchemy.orm import Session

router = APIRouter()

_OFFER_EVENTS = {
    "SELL_VALIDATED",
    "SELL_PRICE_CHANGED",
    "SELL_FAILED",
    "SELL_ABORTED",
    "CREATE_FAILED",
}
_BOOKING_EVENTS = {"BOOKING_SAVED", "BOOKING_SAVE_FAILED"}


def _raise_pipeline_http_error(e: Exception) -> None:
    if isinstance(e, (BookingInFlightError, NoPendingPriceChangeError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, OrderApiError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _entity_type(event_type: str) -> str:
    if event_type in _OFFER_EVENTS:
        return "Offer"
    if event_type in _BOOKING_EVENTS:
        return "Booking"
    return "Order"


def _context(db: Session, scope: str) -> BookingContext:
    try:
        api: OrderApi = get_order_api()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except OrderApiError as e:
        _raise_pipeline_http_error(e)

    state = LocalState(db, scope)

    def on_event(entity_id: str, event_type: str, payload: dict) -> None:
        log_event(
            db,
            entity_type=_entity_type(event_type),
            entity_id=entity_id,
            event_type=event_type,
            event_payload=payload,
        )
        # Committed right away so a failed booking save cannot roll the event back.
        db.commit()

    return BookingContext(
        api=api,
        state=state,
        sink=DbBookingSink(db, api),
        sync_travellers=lambda draft: sync_travellers(db, state, draft),
        on_event=on_event,
    )


def _outcome_out(outcome: SellOutcome) -> SellOutcomeOut:
    return SellOutcomeOut(
        status=outcome.status.value,
        message=outcome.message,
        fare_comparison=FareComparisonOut.from_comparison(outcome.comparison),
        order_reference=outcome.order_reference,
        just_created=outcome.just_created,
        rejected_ssr=[
            RejectedSsrOut(
                passenger_index=r.passenger_index,
                code=r.rejected.code,
                reason=r.rejected.reason,
            )
            for r in outcome.rejected_ssr
        ],
    )


@router.post("/v1/booking/submit", response_model=SellOutcomeOut)
async def submit_booking(
    payload: SellDraftIn,
    db: Session = Depends(get_db),
    scope: str = Depends(require_scope),
) -> SellOutcomeOut:
    ctx = _context(db, scope)
    try:
        outcome = await pipelines.for_scope(scope).submit(payload, ctx)
    except BookingInFlightError as e:
        _raise_pipeline_http_error(e)

    db.commit()
    return _outcome_out(outcome)


@router.post("/v1/booking/accept-price", response_model=SellOutcomeOut)
async def accept_price_change(
    db: Session = Depends(get_db),
    scope: str = Depends(require_scope),
) -> SellOutcomeOut:
    ctx = _context(db, scope)
    try:
        outcome = await pipelines.for_scope(scope).accept_price_change(ctx)
    except (BookingInFlightError, NoPendingPriceChangeError) as e:
        _raise_pipeline_http_error(e)

    db.commit()
    return _outcome_out(outcome)


@router.post("/v1/booking/decline-price", response_model=SellOutcomeOut)
def decline_price_change(
    db: Session = Depends(get_db),
    scope: str = Depends(require_scope),
) -> SellOutcomeOut:
    try:
        outcome = pipelines.for_scope(scope).decline_price_change()
    except NoPendingPriceChangeError as e:
        _raise_pipeline_http_error(e)

    latest_total = outcome.comparison.latest_total if outcome.comparison else None
    log_event(
        db,
        entity_type="Offer",
        entity_id=scope,
        event_type="SELL_ABORTED",
        event_payload={"latest_total": latest_total},
    )
    db.commit()
    return _outcome_out(outcome)
