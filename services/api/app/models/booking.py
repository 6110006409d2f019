from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SsrIn(BaseModel):
    code: str
    remark: str | None = None
    account_number: str | None = None


class AddOnsIn(BaseModel):
    baggage: list[str] = Field(default_factory=list)
    meal: list[str] = Field(default_factory=list)
    seat: str | None = None


class PassengerIn(BaseModel):
    ptc: str = Field(..., min_length=1)
    given_name: str
    surname: str
    gender: str | None = None
    birthdate: str | None = None
    nationality: str | None = None
    passport_number: str | None = None
    passport_expiry: str | None = None
    # Infants only: index of the adult they travel with.
    associated_adult_index: int | None = None
    ssr: list[SsrIn] = Field(default_factory=list)
    add_ons: AddOnsIn | None = None


class ContactIn(BaseModel):
    email: str = ""
    phone_number: str = ""
    country_dialing_code: str = "+880"


class SellDraftIn(BaseModel):
    trace_id: str = ""
    offer_id: str = ""
    expected_total: float | None = None
    currency: str | None = None

    passport_required: bool = False
    offer_ssr_codes: list[str] = Field(default_factory=list)
    operating_carrier: str | None = None

    contact: ContactIn = Field(default_factory=ContactIn)
    passengers: list[PassengerIn] = Field(..., min_length=1)
    created_by: str | None = None


class RejectedSsrOut(BaseModel):
    passenger_index: int
    code: str
    reason: str


class FareComparisonOut(BaseModel):
    previous_total: float | None = None
    latest_total: float | None = None
    currency: str
    difference: float | None = None
    difference_label: str = ""

    @classmethod
    def from_comparison(cls, comparison: Any) -> "FareComparisonOut | None":
        if comparison is None:
            return None
        return cls(
            previous_total=comparison.previous_total,
            latest_total=comparison.latest_total,
            currency=comparison.currency,
            difference=comparison.difference,
            difference_label=comparison.difference_label,
        )


class SellOutcomeOut(BaseModel):
    status: str
    message: str | None = None
    fare_comparison: FareComparisonOut | None = None
    order_reference: str | None = None
    just_created: bool = False
    rejected_ssr: list[RejectedSsrOut] = Field(default_factory=list)


class BookingSaveIn(BaseModel):
    """Booking-history write body: `{orderResponse, createdBy}` or `{orderReference}`."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    order_response: dict[str, Any] | None = None
    created_by: str | None = None
    order_reference: str | None = None


class BookingSaveOut(BaseModel):
    success: bool
    reference_no: str


class BookingRecordOut(BaseModel):
    reference_no: str
    create_date: str
    status: str
    pnr: str | None = None
    name: str
    fly_date: str
    airline: str
    fare: float
    currency: str | None = None
    issued: str
    passenger_type: str
    route: str
    created_by: str
    updated_at: str
