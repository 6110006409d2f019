"""First-time booking: sell (validate and price), then create.

    submit -> sell -> validated -> create -> created | failed
                   -> priceChanged -> accept_price_change -> create
                                   -> decline_price_change -> aborted
                   -> failed

A run is one-at-a-time per client: a second submit while one is in flight is refused.
After a successful create the order is persisted to booking history (rich save, then a
minimal save by reference if that fails). Persistence failures are logged and never turn a
created order into a failed booking.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from services.api.app.models.booking import PassengerIn, SellDraftIn
from services.api.app.models.order import ApiEnvelope, Order
from services.api.app.services.fare import FareComparison, has_price_changed
from services.api.app.services.local_state import LocalState
from services.api.app.services.order_api_base import (
    NETWORK_ERROR_MESSAGE,
    OrderApi,
    OrderApiTransportError,
    best_error_message,
)
from services.api.app.services.ssr import RejectedSsr, SsrSelection, filter_ssr

logger = logging.getLogger(__name__)

SELL_FALLBACK_MESSAGE = "Failed to validate booking"
CREATE_FALLBACK_MESSAGE = "Failed to create booking"
MISSING_REFERENCE_MESSAGE = "Order created but no reference number received"

_INFANT_PTCS = {"INF", "INFANT"}
_ADULT_PTCS = {"ADT", "ADULT"}


class SellStatus(str, Enum):
    VALIDATED = "validated"
    PRICE_CHANGED = "priceChanged"
    FAILED = "failed"
    CREATED = "created"
    ABORTED = "aborted"


class BookingInFlightError(Exception):
    def __init__(self) -> None:
        super().__init__("A booking is already being processed for this session")


class NoPendingPriceChangeError(Exception):
    def __init__(self) -> None:
        super().__init__("There is no price change waiting for a decision")


@dataclass(frozen=True, slots=True)
class PassengerSsrRejection:
    passenger_index: int
    rejected: RejectedSsr


@dataclass(frozen=True, slots=True)
class SellOutcome:
    status: SellStatus
    message: str | None = None
    comparison: FareComparison | None = None
    order_reference: str | None = None
    just_created: bool = False
    order: Order | None = None
    rejected_ssr: tuple[PassengerSsrRejection, ...] = ()


class BookingSink(Protocol):
    async def save_rich(self, envelope: ApiEnvelope, created_by: str | None) -> None: ...

    async def save_minimal(self, order_reference: str) -> None: ...


@dataclass(slots=True)
class BookingContext:
    api: OrderApi
    state: LocalState
    sink: BookingSink
    sync_travellers: Callable[[SellDraftIn], Any] | None = None
    on_event: Callable[[str, str, dict], None] | None = None

    def emit(self, entity_id: str, event_type: str, payload: dict) -> None:
        if self.on_event is not None:
            self.on_event(entity_id, event_type, payload)


@dataclass(slots=True)
class _PendingSell:
    request: dict[str, Any]
    draft: SellDraftIn
    comparison: FareComparison
    rejected_ssr: tuple[PassengerSsrRejection, ...] = field(default_factory=tuple)


def _is_infant(pax: PassengerIn) -> bool:
    return pax.ptc.strip().upper() in _INFANT_PTCS


def _is_adult(pax: PassengerIn) -> bool:
    return pax.ptc.strip().upper() in _ADULT_PTCS


def _associate_pax(draft: SellDraftIn, infant: PassengerIn) -> dict[str, str] | None:
    candidates: list[PassengerIn] = []
    index = infant.associated_adult_index
    if index is not None and 0 <= index < len(draft.passengers):
        candidates.append(draft.passengers[index])
    candidates.extend(p for p in draft.passengers if _is_adult(p))

    for adult in candidates:
        if adult.given_name and adult.surname:
            return {"givenName": adult.given_name, "surname": adult.surname}
    return None


def _pax_entry(
    draft: SellDraftIn, pax: PassengerIn, index: int
) -> tuple[dict[str, Any], list[PassengerSsrRejection]]:
    individual: dict[str, Any] = {
        "givenName": pax.given_name,
        "surname": pax.surname,
        "gender": pax.gender,
        "birthdate": pax.birthdate,
        "nationality": pax.nationality,
    }
    if draft.passport_required and pax.passport_number:
        individual["identityDoc"] = {
            "identityDocType": "Passport",
            "identityDocID": pax.passport_number,
            "expiryDate": pax.passport_expiry or "",
        }
    if _is_infant(pax):
        associate = _associate_pax(draft, pax)
        if associate is not None:
            individual["associatePax"] = associate

    entry: dict[str, Any] = {"ptc": pax.ptc, "individual": individual}

    screened = filter_ssr(
        (SsrSelection(s.code, s.remark, s.account_number) for s in pax.ssr),
        offer_codes=draft.offer_ssr_codes,
        airline_code=draft.operating_carrier,
    )
    if screened.accepted:
        entry["sellSSR"] = screened.accepted

    add_ons: dict[str, list[dict[str, str]]] = {}
    if pax.add_ons is not None:
        if pax.add_ons.baggage:
            add_ons["travelerAddOnServiceBaggage"] = [{"serviceId": s} for s in pax.add_ons.baggage]
        if pax.add_ons.meal:
            add_ons["travelerAddOnServiceMeal"] = [{"serviceId": s} for s in pax.add_ons.meal]
        if pax.add_ons.seat:
            add_ons["travelerAddOnServiceSeat"] = [{"serviceId": pax.add_ons.seat}]
    if add_ons:
        entry["travelerAddOnService"] = add_ons

    rejections = [PassengerSsrRejection(index, r) for r in screened.rejected]
    return entry, rejections


def build_sell_request(
    draft: SellDraftIn,
) -> tuple[dict[str, Any], tuple[PassengerSsrRejection, ...]]:
    """Assemble the sell/create body. Sell and create share the same shape."""

    pax_list: list[dict[str, Any]] = []
    rejected: list[PassengerSsrRejection] = []
    for index, pax in enumerate(draft.passengers):
        entry, rejections = _pax_entry(draft, pax, index)
        pax_list.append(entry)
        rejected.extend(rejections)

    request = {
        "traceId": draft.trace_id,
        "offerId": [draft.offer_id],
        "request": {
            "contactInfo": {
                "phone": {
                    "phoneNumber": draft.contact.phone_number,
                    "countryDialingCode": draft.contact.country_dialing_code.replace("+", ""),
                },
                "emailAddress": draft.contact.email,
            },
            "paxList": pax_list,
        },
    }
    return request, tuple(rejected)


def sell_total(response: dict[str, Any]) -> float | None:
    groups = response.get("offersGroup") or []
    if not groups or not isinstance(groups[0], dict):
        return None

    total = (groups[0].get("offer") or {}).get("totalPrice")
    if isinstance(total, dict):
        total = (total.get("totalPayable") or {}).get("total")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return None
    return float(total)


def _precondition_error(draft: SellDraftIn) -> str | None:
    if not draft.contact.email.strip() or not draft.contact.phone_number.strip():
        return "Please provide contact email and phone number"
    if not draft.trace_id.strip() or not draft.offer_id.strip():
        return "Missing booking information"
    return None


class BookingPipeline:
    """Sell/create state for one client. Lives across requests so a parked price change
    can be accepted or declined later."""

    def __init__(self) -> None:
        self._in_flight = False
        self._pending: _PendingSell | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending_comparison(self) -> FareComparison | None:
        return self._pending.comparison if self._pending is not None else None

    async def submit(self, draft: SellDraftIn, ctx: BookingContext) -> SellOutcome:
        if self._in_flight:
            raise BookingInFlightError()

        problem = _precondition_error(draft)
        if problem is not None:
            return SellOutcome(SellStatus.FAILED, message=problem)

        self._in_flight = True
        self._pending = None
        try:
            request, rejected = build_sell_request(draft)
            if ctx.sync_travellers is not None:
                try:
                    ctx.sync_travellers(draft)
                except Exception as e:
                    logger.warning("traveller sync for offer %s failed: %s", draft.offer_id, e)

            outcome = await self.sell(request, draft, ctx, rejected)
            if outcome.status is not SellStatus.VALIDATED:
                return outcome
            return await self.create(request, draft, ctx, rejected)
        finally:
            self._in_flight = False

    async def sell(
        self,
        request: dict[str, Any],
        draft: SellDraftIn,
        ctx: BookingContext,
        rejected: tuple[PassengerSsrRejection, ...] = (),
    ) -> SellOutcome:
        try:
            envelope = await ctx.api.sell(request)
        except OrderApiTransportError as e:
            logger.error("sell for offer %s: %s", draft.offer_id, e)
            return SellOutcome(SellStatus.FAILED, message=NETWORK_ERROR_MESSAGE, rejected_ssr=rejected)

        if not envelope.success or not envelope.response:
            message = best_error_message(envelope, SELL_FALLBACK_MESSAGE)
            ctx.emit(draft.offer_id, "SELL_FAILED", {"message": message})
            return SellOutcome(SellStatus.FAILED, message=message, rejected_ssr=rejected)

        latest = sell_total(envelope.response)
        change_info = envelope.response.get("offerChangeInfo")
        if has_price_changed(draft.expected_total, latest, change_info):
            comparison = FareComparison.between(draft.expected_total, latest, draft.currency)
            self._pending = _PendingSell(request, draft, comparison, rejected)
            ctx.emit(
                draft.offer_id,
                "SELL_PRICE_CHANGED",
                {"previous_total": draft.expected_total, "latest_total": latest},
            )
            return SellOutcome(SellStatus.PRICE_CHANGED, comparison=comparison, rejected_ssr=rejected)

        ctx.emit(draft.offer_id, "SELL_VALIDATED", {"total": latest})
        return SellOutcome(SellStatus.VALIDATED, rejected_ssr=rejected)

    async def accept_price_change(self, ctx: BookingContext) -> SellOutcome:
        if self._in_flight:
            raise BookingInFlightError()
        pending = self._pending
        if pending is None:
            raise NoPendingPriceChangeError()

        self._pending = None
        self._in_flight = True
        try:
            return await self.create(pending.request, pending.draft, ctx, pending.rejected_ssr)
        finally:
            self._in_flight = False

    def decline_price_change(self) -> SellOutcome:
        if self._pending is None:
            raise NoPendingPriceChangeError()
        comparison = self._pending.comparison
        self._pending = None
        return SellOutcome(SellStatus.ABORTED, comparison=comparison)

    async def create(
        self,
        request: dict[str, Any],
        draft: SellDraftIn,
        ctx: BookingContext,
        rejected: tuple[PassengerSsrRejection, ...] = (),
    ) -> SellOutcome:
        try:
            envelope = await ctx.api.create(request)
        except OrderApiTransportError as e:
            logger.error("create for offer %s: %s", draft.offer_id, e)
            return SellOutcome(SellStatus.FAILED, message=NETWORK_ERROR_MESSAGE, rejected_ssr=rejected)

        if not envelope.success or not envelope.response:
            message = best_error_message(envelope, CREATE_FALLBACK_MESSAGE)
            ctx.emit(draft.offer_id, "CREATE_FAILED", {"message": message})
            return SellOutcome(SellStatus.FAILED, message=message, rejected_ssr=rejected)

        order = envelope.order
        ref = order.order_reference if order is not None else None
        if not ref:
            ctx.emit(draft.offer_id, "CREATE_FAILED", {"message": MISSING_REFERENCE_MESSAGE})
            return SellOutcome(
                SellStatus.FAILED, message=MISSING_REFERENCE_MESSAGE, rejected_ssr=rejected
            )

        ctx.state.adopt_snapshot(envelope, source="create")
        if envelope.responded_on:
            ctx.state.set_creation_time(ref, envelope.responded_on)
        ctx.emit(ref, "ORDER_CREATED", {"offer_id": draft.offer_id, "status": order.order_status})

        await self._persist(envelope, ref, draft.created_by, ctx)
        return SellOutcome(
            SellStatus.CREATED,
            order_reference=ref,
            just_created=True,
            order=order,
            rejected_ssr=rejected,
        )

    async def _persist(
        self, envelope: ApiEnvelope, ref: str, created_by: str | None, ctx: BookingContext
    ) -> None:
        try:
            await ctx.sink.save_rich(envelope, created_by)
            ctx.emit(ref, "BOOKING_SAVED", {"mode": "rich"})
            return
        except Exception as e:
            logger.warning("rich booking save for %s failed, trying minimal: %s", ref, e)

        try:
            await ctx.sink.save_minimal(ref)
            ctx.emit(ref, "BOOKING_SAVED", {"mode": "minimal"})
        except Exception as e:
            logger.warning("minimal booking save for %s failed: %s", ref, e)
            ctx.emit(ref, "BOOKING_SAVE_FAILED", {"error": str(e)})


class PipelineRegistry:
    def __init__(self) -> None:
        self._pipelines: dict[str, BookingPipeline] = {}

    def for_scope(self, scope: str) -> BookingPipeline:
        return self._pipelines.setdefault(scope, BookingPipeline())

    def clear(self) -> None:
        self._pipelines.clear()


pipelines = PipelineRegistry()
