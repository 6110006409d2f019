"""Supplier order payloads.

The Order API speaks camelCase JSON and returns more than we read. Every model here keeps
unknown fields (`extra="allow"`) so a snapshot round-trips back to storage unchanged.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _SupplierModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TotalPayable(_SupplierModel):
    total: float | None = None
    # The supplier spells this field "curreny".
    currency: str | None = Field(default=None, alias="curreny")


class OrderPrice(_SupplierModel):
    total_payable: TotalPayable | None = None


class OrderItem(_SupplierModel):
    fare_type: str | None = None
    validating_carrier: str | None = None
    refundable: bool | None = None
    price: OrderPrice | None = None
    pax_segment_list: list[dict[str, Any]] = Field(default_factory=list)


class Order(_SupplierModel):
    order_reference: str | None = None
    order_status: str | None = None
    payment_time_limit: str | None = None
    order_change_info: Any | None = None
    trace_id: str | None = None
    order_item: list[OrderItem] = Field(default_factory=list)
    pax_list: list[dict[str, Any]] = Field(default_factory=list)
    contact_detail: dict[str, Any] | None = None

    @property
    def first_item(self) -> OrderItem | None:
        return self.order_item[0] if self.order_item else None

    @property
    def fare_type(self) -> str:
        item = self.first_item
        return (item.fare_type or "") if item else ""

    @property
    def total_payable(self) -> float | None:
        item = self.first_item
        if item is None or item.price is None or item.price.total_payable is None:
            return None
        return item.price.total_payable.total

    @property
    def currency(self) -> str | None:
        item = self.first_item
        if item is None or item.price is None or item.price.total_payable is None:
            return None
        return item.price.total_payable.currency

    def first_segment(self) -> dict[str, Any]:
        item = self.first_item
        if item is None or not item.pax_segment_list:
            return {}
        segment = item.pax_segment_list[0].get("paxSegment")
        return segment if isinstance(segment, dict) else {}


class ApiError(_SupplierModel):
    error_code: str | None = None
    error_message: str | None = None


class ApiEnvelope(_SupplierModel):
    """Top-level `{success, response, error, ...}` wrapper every Order API call returns."""

    success: bool = False
    response: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("response", "Response")
    )
    error: ApiError | str | None = None
    message: str | None = None
    details: Any | None = None
    requested_on: str | None = None
    responded_on: str | None = None
    status_code: Any | None = None

    @property
    def order(self) -> Order | None:
        """The response as an Order, or None when it is missing or not a usable order."""

        if not isinstance(self.response, dict):
            return None
        try:
            return Order.model_validate(self.response)
        except ValidationError as e:
            logger.warning("response is not a usable order: %d error(s)", e.error_count())
            return None
