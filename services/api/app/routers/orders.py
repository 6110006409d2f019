from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EventV1
from packages.shared.schemas.order_card_v1 import (
    OrderBannerTypeV1,
    OrderBannerV1,
    OrderCardActionTypeV1,
    OrderCardActionV1,
    OrderCardV1,
    StatusBadgeV1,
)
from services.api.app.db.database import db_session
from services.api.app.db.deps import get_db, get_scope
from services.api.app.models.booking import FareComparisonOut
from services.api.app.models.confirmation import CancelOrderResponse, ConfirmationView
from services.api.app.models.order import ApiEnvelope, Order
from services.api.app.services.booking_store import ensure_booking
from services.api.app.services.confirmation import (
    ConfirmationHooks,
    ConfirmationPacing,
    ConfirmationSession,
    ConfirmStep,
    ConfirmTrigger,
    InvalidTransitionError,
    OrderActionBusyError,
    confirmations,
)
from services.api.app.services.event_log import list_events, log_event
from services.api.app.services.fare import DEFAULT_CURRENCY
from services.api.app.services.local_state import LocalState, OrderSnapshot
from services.api.app.services.order_api_base import (
    OrderApi,
    OrderApiConfigError,
    OrderApiError,
    OrderApiTransportError,
    best_error_message,
)
from services.api.app.services.order_api_factory import get_order_api
from services.api.app.services.poller import pollers
from services.api.app.services.status import (
    can_confirm_or_cancel,
    effective_status,
    get_status_badge,
    instant_issue_state,
    normalize_status,
    payment_deadline_message,
    payment_status,
)
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()

LOAD_NETWORK_MESSAGE = (
    "Unable to reach the booking API. Please check your connection and try again."
)
CANCEL_FALLBACK_MESSAGE = "Failed to cancel order"
CANCEL_INVALID_RESPONSE_MESSAGE = "Failed to cancel order. Invalid response from server."

_CELEBRATED_STATUSES = {"onhold", "confirmed"}


@dataclass
class _LoadedOrder:
    order: Order
    source: str
    snapshot: OrderSnapshot | None
    warnings: list[str]
    envelope: ApiEnvelope | None = None


def _raise_order_api_http_error(e: Exception) -> None:
    if isinstance(e, OrderApiConfigError):
        raise HTTPException(status_code=500, detail=str(e)) from e

    if isinstance(e, (InvalidTransitionError, OrderActionBusyError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, OrderApiTransportError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, OrderApiError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _order_api() -> OrderApi:
    try:
        return get_order_api()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except OrderApiError as e:
        _raise_order_api_http_error(e)


def _log(db: Session, entity_type: str, ref: str, event_type: str, payload: dict) -> None:
    log_event(
        db,
        entity_type=entity_type,
        entity_id=ref,
        event_type=event_type,
        event_payload=payload,
    )


async def _load_order(db: Session, api: OrderApi, state: LocalState, ref: str) -> _LoadedOrder:
    """Retrieve the order, falling back to this client's cached snapshot of the same order."""

    envelope: ApiEnvelope | None = None
    try:
        envelope = await api.retrieve(ref)
    except OrderApiTransportError as e:
        logger.error("retrieve %s: %s", ref, e)
        message = LOAD_NETWORK_MESSAGE
    else:
        message = best_error_message(envelope, "Failed to load order")

    order = envelope.order if envelope is not None and envelope.success else None
    if order is not None and order.order_reference:
        snapshot = state.adopt_snapshot(envelope, source="retrieve")
        _log(db, "Order", ref, "ORDER_RETRIEVED", {"order_status": order.order_status})
        return _LoadedOrder(
            order=order, source="remote", snapshot=snapshot, warnings=[], envelope=envelope
        )

    _log(db, "Order", ref, "ORDER_RETRIEVE_FAILED", {"message": message})
    cached = state.cached_order(ref)
    if cached is not None:
        cached_order, snapshot = cached
        return _LoadedOrder(order=cached_order, source="snapshot", snapshot=snapshot, warnings=[message])

    db.commit()
    status_code = 502 if envelope is None else 404
    raise HTTPException(status_code=status_code, detail=message)


def _sync_booking_history(db: Session, state: LocalState, loaded: _LoadedOrder) -> None:
    """Record a displayed order in booking history once per client.

    Covers orders whose save at create time never landed. Failures are logged, not raised.
    """

    ref = loaded.order.order_reference
    if loaded.source != "remote" or loaded.envelope is None or not ref:
        return
    if state.booking_synced(ref):
        return

    try:
        record = ensure_booking(db, loaded.envelope)
    except Exception as e:
        logger.warning("booking history for %s not saved: %s", ref, e)
        db.rollback()
        _log(db, "Booking", ref, "BOOKING_SAVE_FAILED", {"mode": "order_view", "message": str(e)})
        db.commit()
        return

    state.mark_booking_synced(ref)
    _log(db, "Booking", ref, "BOOKING_SAVED", {"mode": "order_view", "status": record.status})
    db.commit()


async def _poll_fetch(ref: str) -> Order | None:
    try:
        envelope = await get_order_api().retrieve(ref)
    except (OrderApiError, ValueError) as e:
        logger.warning("instant-issue poll for %s failed: %s", ref, e)
        return None

    order = envelope.order if envelope.success else None
    db = db_session()
    try:
        _log(
            db,
            "Order",
            ref,
            "ORDER_POLLED",
            {"success": envelope.success, "order_status": order.order_status if order else None},
        )
        db.commit()
    finally:
        db.close()
    return order


def _banners(
    order: Order, effective: str, loaded: _LoadedOrder, now: datetime
) -> list[OrderBannerV1]:
    banners: list[OrderBannerV1] = []
    ref = order.order_reference

    instant = instant_issue_state(order.fare_type, effective)
    if instant.issuing:
        poller = pollers.get(ref)
        every = f" every {poller.interval_s:g} seconds" if poller is not None else ""
        banners.append(
            OrderBannerV1(
                type=OrderBannerTypeV1.INSTANT_ISSUING,
                message=(
                    f"Instant ticket issuance is in progress. This order refreshes{every} "
                    "until the supplier returns a final status."
                ),
            )
        )
    elif instant.failed:
        banners.append(
            OrderBannerV1(
                type=OrderBannerTypeV1.INSTANT_ISSUE_FAILED,
                message=(
                    "Instant ticket issuance was not completed. Please refresh and check status, "
                    f"or contact support with order reference {ref}."
                ),
            )
        )
    elif instant.issued:
        banners.append(
            OrderBannerV1(
                type=OrderBannerTypeV1.INSTANT_ISSUED,
                message="Instant purchase completed. Your ticket is issued and confirmed.",
            )
        )

    if order.order_status == "OnHold":
        deadline = payment_deadline_message(order.payment_time_limit, now)
        if deadline:
            banners.append(OrderBannerV1(type=OrderBannerTypeV1.PAYMENT_DEADLINE, message=deadline))

    if loaded.source == "snapshot" and loaded.snapshot is not None and loaded.snapshot.unconfirmed:
        banners.append(
            OrderBannerV1(
                type=OrderBannerTypeV1.SNAPSHOT_UNCONFIRMED,
                message="Showing the re-priced fare. This order has not been confirmed.",
            )
        )
    return banners


def _order_card(
    loaded: _LoadedOrder, state: LocalState, *, just_created: bool = False
) -> OrderCardV1:
    order = loaded.order
    ref = order.order_reference or ""
    now = datetime.now(timezone.utc)
    effective = effective_status(order, now)
    badge = get_status_badge(effective)

    session = confirmations.get(ref)
    actions: list[OrderCardActionV1] = []
    if can_confirm_or_cancel(order, now):
        busy = session is not None
        actions.append(
            OrderCardActionV1(type=OrderCardActionTypeV1.CONFIRM, label="Confirm booking", enabled=not busy)
        )
        actions.append(
            OrderCardActionV1(type=OrderCardActionTypeV1.CANCEL, label="Cancel booking", enabled=not busy)
        )
    actions.append(
        OrderCardActionV1(
            type=OrderCardActionTypeV1.REFRESH,
            label="Refresh",
            enabled=not pollers.is_refreshing(ref),
        )
    )

    celebrate = False
    if just_created and normalize_status(order.order_status) in _CELEBRATED_STATUSES:
        celebrate = state.claim_celebration(ref)

    polling = pollers.watch(order, _poll_fetch) if loaded.source == "remote" else False

    return OrderCardV1(
        order_reference=ref,
        order_status=order.order_status or "",
        effective_status=effective,
        badge=StatusBadgeV1(label=badge.label, color=badge.color),
        payment_status=payment_status(effective),
        payment_time_limit=order.payment_time_limit,
        fare_type=order.fare_type or None,
        total=order.total_payable,
        currency=order.currency or DEFAULT_CURRENCY,
        created_on=state.creation_time(ref),
        source=loaded.source,
        snapshot_version=loaded.snapshot.version if loaded.snapshot else None,
        celebrate=celebrate,
        polling=polling,
        actions=actions,
        banners=_banners(order, effective, loaded, now),
        warnings=loaded.warnings,
        order=order.to_payload(),
    )


@router.get("/v1/orders/{order_reference}", response_model=OrderCardV1)
async def get_order(
    order_reference: str,
    just_created: bool = False,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> OrderCardV1:
    api = _order_api()
    state = LocalState(db, scope)
    loaded = await _load_order(db, api, state, order_reference)
    card = _order_card(loaded, state, just_created=just_created)
    db.commit()
    _sync_booking_history(db, state, loaded)
    return card


@router.post("/v1/orders/{order_reference}/refresh", response_model=OrderCardV1)
async def refresh_order(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> OrderCardV1:
    api = _order_api()
    state = LocalState(db, scope)
    with pollers.refreshing(order_reference) as acquired:
        if not acquired:
            raise HTTPException(status_code=409, detail="A refresh is already in progress")
        loaded = await _load_order(db, api, state, order_reference)

    card = _order_card(loaded, state)
    db.commit()
    _sync_booking_history(db, state, loaded)
    return card


@router.post("/v1/orders/{order_reference}/cancel", response_model=CancelOrderResponse)
async def cancel_order(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> CancelOrderResponse:
    api = _order_api()
    state = LocalState(db, scope)
    loaded = await _load_order(db, api, state, order_reference)
    if not can_confirm_or_cancel(loaded.order):
        raise HTTPException(
            status_code=409, detail="Only on-hold orders that have not expired can be cancelled"
        )

    try:
        with confirmations.cancelling(order_reference):
            envelope = await api.cancel(order_reference)
    except OrderActionBusyError as e:
        _raise_order_api_http_error(e)
    except OrderApiTransportError as e:
        logger.error("cancel %s: %s", order_reference, e)
        _log(db, "Order", order_reference, "ORDER_CANCEL_FAILED", {"message": str(e)})
        db.commit()
        return CancelOrderResponse(success=False, message=CANCEL_INVALID_RESPONSE_MESSAGE)

    if not envelope.success:
        message = best_error_message(envelope, CANCEL_FALLBACK_MESSAGE)
        _log(db, "Order", order_reference, "ORDER_CANCEL_FAILED", {"message": message})
        db.commit()
        return CancelOrderResponse(success=False, message=message)

    state.clear_creation_time(order_reference)
    pollers.stop(order_reference)
    _log(db, "Order", order_reference, "ORDER_CANCELLED", {})
    db.commit()
    return CancelOrderResponse(success=True)


def _confirmation_view(session: ConfirmationSession) -> ConfirmationView:
    return ConfirmationView(
        order_reference=session.order_reference,
        step=session.step.value if session.step else None,
        label=session.label,
        open=session.is_open,
        error_message=session.error_message,
        fare_comparison=FareComparisonOut.from_comparison(session.fare_comparison),
        trail=[s.value for s in session.trail],
        action_in_progress=session.action_in_progress,
    )


def _session_hooks(db: Session, state: LocalState, api: OrderApi) -> ConfirmationHooks:
    def on_step(
        session: ConfirmationSession, trigger: ConfirmTrigger, previous: ConfirmStep | None
    ) -> None:
        _log(
            db,
            "Confirmation",
            session.order_reference,
            "CONFIRMATION_STEP",
            {
                "from": previous.value if previous else None,
                "trigger": trigger.value,
                "to": session.step.value if session.step else None,
                "error_message": session.error_message,
            },
        )

    async def on_success(session: ConfirmationSession) -> None:
        ref = session.order_reference
        try:
            envelope = await api.retrieve(ref)
        except OrderApiTransportError as e:
            logger.warning("refresh after confirm %s failed: %s", ref, e)
            return

        order = envelope.order if envelope.success else None
        if order is None:
            logger.warning("refresh after confirm %s returned no order", ref)
            return
        state.adopt_snapshot(envelope, source="retrieve")
        pollers.watch(order, _poll_fetch)

    def adopt_snapshot(envelope: ApiEnvelope) -> None:
        snapshot = state.adopt_snapshot(envelope, source="reshop", unconfirmed=True)
        order = envelope.order
        _log(
            db,
            "Order",
            order.order_reference if order and order.order_reference else "",
            "FARE_UPDATE_DECLINED",
            {"snapshot_version": snapshot.version, "total": order.total_payable if order else None},
        )

    return ConfirmationHooks(on_step=on_step, on_success=on_success, adopt_snapshot=adopt_snapshot)


def _open_session(order_reference: str) -> ConfirmationSession:
    session = confirmations.get(order_reference)
    if session is None:
        raise HTTPException(status_code=404, detail="No open confirmation for this order")
    return session


@router.post("/v1/orders/{order_reference}/confirmation", response_model=ConfirmationView)
async def start_confirmation(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> ConfirmationView:
    api = _order_api()
    state = LocalState(db, scope)

    existing = confirmations.get(order_reference)
    if existing is not None:
        return _confirmation_view(existing)

    loaded = await _load_order(db, api, state, order_reference)
    if not can_confirm_or_cancel(loaded.order):
        raise HTTPException(
            status_code=409, detail="Only on-hold orders that have not expired can be confirmed"
        )

    try:
        session, created = confirmations.open(
            order_reference,
            lambda: ConfirmationSession(loaded.order, api, pacing=ConfirmationPacing.from_env()),
        )
    except OrderActionBusyError as e:
        _raise_order_api_http_error(e)

    if created:
        session.hooks = _session_hooks(db, state, api)
        await session.start()
    db.commit()
    return _confirmation_view(session)


@router.get("/v1/orders/{order_reference}/confirmation", response_model=ConfirmationView)
def get_confirmation(order_reference: str) -> ConfirmationView:
    return _confirmation_view(_open_session(order_reference))


@router.post("/v1/orders/{order_reference}/confirmation/accept", response_model=ConfirmationView)
async def accept_fare_update(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> ConfirmationView:
    session = _open_session(order_reference)
    session.hooks = _session_hooks(db, LocalState(db, scope), _order_api())
    try:
        await session.accept_fare()
    except InvalidTransitionError as e:
        _raise_order_api_http_error(e)
    db.commit()
    return _confirmation_view(session)


@router.post("/v1/orders/{order_reference}/confirmation/decline", response_model=ConfirmationView)
def decline_fare_update(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> ConfirmationView:
    session = _open_session(order_reference)
    session.hooks = _session_hooks(db, LocalState(db, scope), _order_api())
    try:
        session.decline_fare()
    except InvalidTransitionError as e:
        _raise_order_api_http_error(e)
    db.commit()
    return _confirmation_view(session)


@router.delete("/v1/orders/{order_reference}/confirmation", response_model=ConfirmationView)
def close_confirmation(
    order_reference: str,
    db: Session = Depends(get_db),
    scope: str = Depends(get_scope),
) -> ConfirmationView:
    session = _open_session(order_reference)
    session.hooks = _session_hooks(db, LocalState(db, scope), _order_api())
    session.close()
    db.commit()
    return _confirmation_view(session)


@router.get("/v1/orders/{order_reference}/events", response_model=list[EventV1])
def get_order_events(order_reference: str, db: Session = Depends(get_db)) -> list[EventV1]:
    return [
        EventV1(
            id=e.id,
            entity_type=e.entity_type,
            entity_id=e.entity_id,
            event_type=e.event_type,
            payload=e.event_payload_json,
            created_at=e.created_at.isoformat(),
        )
        for e in list_events(db, order_reference)
    ]
