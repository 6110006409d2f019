from datetime import datetime, timedelta, timezone

import pytest
from services.api.app.models.order import Order
from services.api.app.services.status import (
    EXPIRED,
    booking_status,
    can_confirm_or_cancel,
    effective_status,
    get_status_badge,
    instant_issue_state,
    is_expired_hold,
    is_payment_time_limit_past,
    is_processing,
    payment_deadline_message,
    payment_status,
)

DHAKA = timezone(timedelta(hours=6))
NOW = datetime(2030, 1, 29, 10, 0, tzinfo=DHAKA)


def _order(status: str, payment_time_limit: str | None = None, fare_type: str = "Regular") -> Order:
    return Order.model_validate(
        {
            "orderReference": "TD1",
            "orderStatus": status,
            "paymentTimeLimit": payment_time_limit,
            "orderItem": [{"fareType": fare_type}],
        }
    )


def test_on_hold_past_deadline_displays_as_expired() -> None:
    order = _order("OnHold", "2030-01-28T10:00:00+06:00")

    assert effective_status(order, NOW) == EXPIRED
    assert get_status_badge(effective_status(order, NOW)).label == "Expired"
    assert payment_status(effective_status(order, NOW)) == "Unpaid"
    assert can_confirm_or_cancel(order, NOW) is False
    # Supplier status is left alone.
    assert order.order_status == "OnHold"


def test_on_hold_before_deadline_can_be_confirmed() -> None:
    order = _order("OnHold", "2030-01-29T14:30:00+06:00")

    assert effective_status(order, NOW) == "OnHold"
    assert can_confirm_or_cancel(order, NOW) is True


def test_expired_hold_matches_exact_on_hold_literal_only() -> None:
    past = "2030-01-28T10:00:00+06:00"

    assert is_expired_hold("OnHold", past, NOW) is True
    assert is_expired_hold("onhold", past, NOW) is False
    assert is_expired_hold("Confirmed", past, NOW) is False


def test_web_fare_pending_is_issuing_and_processing() -> None:
    order = _order("Pending", fare_type="Web")
    effective = effective_status(order, NOW)

    state = instant_issue_state(order.fare_type, effective)
    assert state.issuing is True
    assert state.failed is False
    assert payment_status(effective) == "Processing"
    assert get_status_badge(effective).label == "Pending"


@pytest.mark.parametrize(
    ("status", "issuing", "failed", "issued"),
    [
        ("In-Progress", True, False, False),
        ("InProgress", True, False, False),
        ("UnConfirmed", False, True, False),
        ("Unknown", False, True, False),
        ("Confirmed", False, False, True),
    ],
)
def test_instant_issue_state(status: str, issuing: bool, failed: bool, issued: bool) -> None:
    state = instant_issue_state("web", status)

    assert (state.issuing, state.failed, state.issued) == (issuing, failed, issued)


def test_non_web_fare_is_never_instant_issue() -> None:
    state = instant_issue_state("Regular", "Pending")

    assert not (state.issuing or state.failed or state.issued)


@pytest.mark.parametrize(
    ("status", "label", "color"),
    [
        ("OnHold", "On Hold", "#F59E0B"),
        ("on-hold", "On Hold", "#F59E0B"),
        ("Confirmed", "Confirmed", "#16A34A"),
        ("Expired", "Expired", "#6B7280"),
        ("Canceled", "Cancelled", "#DC2626"),
        ("UnConfirmed", "Un-Confirmed", "#F97316"),
        ("Ticketing", "Ticketing", "#FACC15"),
        ("", "Pending", "#FACC15"),
        (None, "Pending", "#FACC15"),
    ],
)
def test_status_badge(status: str | None, label: str, color: str) -> None:
    badge = get_status_badge(status)

    assert badge.label == label
    assert badge.color == color


def test_is_processing_ignores_case_and_hyphens() -> None:
    assert is_processing("PENDING")
    assert is_processing("in-progress")
    assert not is_processing("Confirmed")
    assert not is_processing(None)


def test_payment_time_limit_parsing() -> None:
    now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    # Naive values are read as UTC.
    assert is_payment_time_limit_past("2030-01-01T11:59:00", now) is True
    assert is_payment_time_limit_past("2030-01-01T12:01:00", now) is False
    assert is_payment_time_limit_past("2030-01-01T11:00:00Z", now) is True
    assert is_payment_time_limit_past("not a date", now) is False
    assert is_payment_time_limit_past(None, now) is False


@pytest.mark.parametrize(
    ("deadline", "message"),
    [
        ("2030-01-29T14:30:00+06:00", "Your booking will expire today at 14:30."),
        ("2030-01-30T09:15:00+06:00", "Your booking will expire tomorrow at 09:15."),
        ("2030-02-03T08:05:00+06:00", "Your booking will expire by 3 February, 08:05."),
        ("2030-01-29T09:00:00+06:00", "Booking time limit has expired."),
        ("garbage", ""),
    ],
)
def test_payment_deadline_message(deadline: str, message: str) -> None:
    assert payment_deadline_message(deadline, NOW) == message


def test_booking_status_slugs() -> None:
    assert booking_status("OnHold") == "on-hold"
    assert booking_status("InProgress") == "in-progress"
    assert booking_status("Confirmed") == "confirmed"
    assert booking_status("Something") == "pending"
    assert booking_status(None) == "pending"
