from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from services.api.app.models.order import ApiEnvelope

_BASE_FARE_PER_PAX = 5000.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class MockSupplier:
    """In-memory stand-in for the remote Order API.

    Orders live for the life of the process so sell/create/retrieve/confirm chain across
    requests the way they would against the real supplier.
    """

    def __init__(self) -> None:
        self._orders: dict[str, dict[str, Any]] = {}
        self._pending_totals: dict[str, float] = {}
        self._retrieves_until_settled: dict[str, int] = {}

    def reset(self) -> None:
        self._orders.clear()
        self._pending_totals.clear()
        self._retrieves_until_settled.clear()

    def seed_order(self, order: dict[str, Any], *, settle_after_retrieves: int | None = None) -> str:
        ref = order.get("orderReference") or _new_reference()
        stored = copy.deepcopy(order)
        stored["orderReference"] = ref
        self._orders[ref] = stored
        if settle_after_retrieves is not None:
            self._retrieves_until_settled[ref] = settle_after_retrieves
        return ref

    def get(self, ref: str) -> dict[str, Any] | None:
        order = self._orders.get(ref)
        return copy.deepcopy(order) if order is not None else None

    def retrieve(self, ref: str) -> dict[str, Any] | None:
        order = self._orders.get(ref)
        if order is None:
            return None

        remaining = self._retrieves_until_settled.get(ref)
        if remaining is not None:
            if remaining <= 0:
                order["orderStatus"] = "Confirmed"
                del self._retrieves_until_settled[ref]
            else:
                self._retrieves_until_settled[ref] = remaining - 1
        return copy.deepcopy(order)

    def reshop(self, ref: str, drift: float) -> dict[str, Any] | None:
        order = self.get(ref)
        if order is None:
            return None

        if drift:
            price = order["orderItem"][0]["price"]["totalPayable"]
            price["total"] = float(price["total"]) + drift
            order["orderChangeInfo"] = {"reason": "FARE_CHANGED"}
            self._pending_totals[ref] = price["total"]
        return order

    def set_status(self, ref: str, status: str) -> None:
        order = self._orders[ref]
        order["orderStatus"] = status
        if ref in self._pending_totals and status == "Confirmed":
            order["orderItem"][0]["price"]["totalPayable"]["total"] = self._pending_totals.pop(ref)


mock_supplier = MockSupplier()


class OrderApiMockAdapter:
    vendor = "ORDER_API_MOCK"

    def __init__(
        self,
        supplier: MockSupplier | None = None,
        *,
        reshop_drift: float = 0.0,
        sell_drift: float = 0.0,
    ) -> None:
        self._supplier = supplier or mock_supplier
        self._reshop_drift = reshop_drift
        self._sell_drift = sell_drift

    async def retrieve(self, order_reference: str) -> ApiEnvelope:
        order = self._supplier.retrieve(order_reference)
        if order is None:
            return _failure("ORDER_NOT_FOUND", "Order not found")
        return _success(order)

    async def reshop(self, order_reference: str) -> ApiEnvelope:
        order = self._supplier.reshop(order_reference, self._reshop_drift)
        if order is None:
            return _failure("ORDER_NOT_FOUND", "Order not found")
        return _success(order)

    async def confirm(self, order_reference: str) -> ApiEnvelope:
        order = self._supplier.get(order_reference)
        if order is None:
            return _failure("ORDER_NOT_FOUND", "Order not found")
        if order.get("orderStatus") != "OnHold":
            return _failure("INVALID_STATE", "Only on-hold orders can be confirmed")

        self._supplier.set_status(order_reference, "Confirmed")
        return _success(None)

    async def cancel(self, order_reference: str) -> ApiEnvelope:
        order = self._supplier.get(order_reference)
        if order is None:
            return _failure("ORDER_NOT_FOUND", "Order not found")
        if order.get("orderStatus") != "OnHold":
            return _failure("INVALID_STATE", "Only on-hold orders can be cancelled")

        self._supplier.set_status(order_reference, "Cancelled")
        return _success(None)

    async def sell(self, request: dict[str, Any]) -> ApiEnvelope:
        problem = _validate_offer_request(request)
        if problem:
            return _failure("VALIDATION_ERROR", problem)

        offer_id = request["offerId"][0]
        total = _quote(request) + self._sell_drift
        response = {
            "traceId": request["traceId"],
            "offerChangeInfo": {"reason": "FARE_CHANGED"} if self._sell_drift else None,
            "offersGroup": [{"offer": {"offerId": offer_id, "totalPrice": total}}],
        }
        return _success(response)

    async def create(self, request: dict[str, Any]) -> ApiEnvelope:
        problem = _validate_offer_request(request)
        if problem:
            return _failure("VALIDATION_ERROR", problem)

        offer_id = request["offerId"][0]
        web_fare = str(offer_id).upper().startswith("WEB")
        departure = (datetime.now(timezone.utc) + timedelta(days=14)).replace(microsecond=0)
        body = request["request"]
        order = {
            "traceId": request["traceId"],
            "orderStatus": "InProgress" if web_fare else "OnHold",
            "paymentTimeLimit": None if web_fare else (
                datetime.now(timezone.utc) + timedelta(hours=24)
            ).replace(microsecond=0).isoformat(),
            "orderItem": [
                {
                    "fareType": "Web" if web_fare else "Regular",
                    "validatingCarrier": "BG",
                    "refundable": not web_fare,
                    "price": {
                        "totalPayable": {
                            "total": _quote(request) + self._sell_drift,
                            "curreny": "BDT",
                        }
                    },
                    "paxSegmentList": [
                        {
                            "paxSegment": {
                                "departure": {
                                    "iatA_LocationCode": "DAC",
                                    "aircraftScheduledDateTime": departure.isoformat(),
                                },
                                "arrival": {"iatA_LocationCode": "CXB"},
                                "marketingCarrierInfo": {"carrierDesigCode": "BG"},
                                "operatingCarrierInfo": {"carrierDesigCode": "BG"},
                                "airlinePNR": uuid4().hex[:6].upper(),
                            }
                        }
                    ],
                }
            ],
            "paxList": [
                {"ptc": pax.get("ptc"), "individual": pax.get("individual", {})}
                for pax in body.get("paxList", [])
            ],
            "contactDetail": {
                "phoneNumber": body.get("contactInfo", {}).get("phone", {}).get("phoneNumber"),
                "emailAddress": body.get("contactInfo", {}).get("emailAddress"),
            },
        }
        ref = self._supplier.seed_order(order, settle_after_retrieves=1 if web_fare else None)
        return _success(self._supplier.get(ref))


def _new_reference() -> str:
    return f"TD{uuid4().hex[:8].upper()}"


def _quote(request: dict[str, Any]) -> float:
    pax = request.get("request", {}).get("paxList", [])
    return _BASE_FARE_PER_PAX * max(len(pax), 1)


def _validate_offer_request(request: dict[str, Any]) -> str | None:
    if not request.get("traceId"):
        return "traceId is required"
    if not request.get("offerId"):
        return "offerId is required"
    body = request.get("request") or {}
    if not body.get("paxList"):
        return "At least one passenger is required"
    contact = body.get("contactInfo") or {}
    if not contact.get("emailAddress"):
        return "Contact email is required"
    return None


def _success(response: dict[str, Any] | None) -> ApiEnvelope:
    now = _now_iso()
    return ApiEnvelope.model_validate(
        {
            "success": True,
            "response": response,
            "requestedOn": now,
            "respondedOn": now,
            "statusCode": "OK",
        }
    )


def _failure(code: str, message: str) -> ApiEnvelope:
    now = _now_iso()
    return ApiEnvelope.model_validate(
        {
            "success": False,
            "error": {"errorCode": code, "errorMessage": message},
            "requestedOn": now,
            "respondedOn": now,
            "statusCode": "BadRequest",
        }
    )
