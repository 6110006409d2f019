"""Status derivation for orders.

One place decides what status an order *displays* as. The supplier's `orderStatus` is never
rewritten here: an on-hold order past its payment deadline shows as Expired, but the stored
order still says OnHold until the supplier itself reports otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from services.api.app.models.order import Order

EXPIRED = "Expired"
ON_HOLD = "OnHold"
INSTANT_ISSUE_FARE_TYPE = "web"

_PROCESSING = frozenset({"pending", "inprogress"})
_INSTANT_ISSUE_FAILED = frozenset({"unknown", "unconfirmed"})


@dataclass(frozen=True, slots=True)
class StatusBadge:
    label: str
    color: str


_PENDING_BADGE = StatusBadge("Pending", "#FACC15")

_BADGES: dict[str, StatusBadge] = {
    "onhold": StatusBadge("On Hold", "#F59E0B"),
    "on-hold": StatusBadge("On Hold", "#F59E0B"),
    "pending": _PENDING_BADGE,
    "inprogress": StatusBadge("In Progress", "#3B82F6"),
    "in-progress": StatusBadge("In Progress", "#3B82F6"),
    "confirmed": StatusBadge("Confirmed", "#16A34A"),
    "expired": StatusBadge("Expired", "#6B7280"),
    "unconfirmed": StatusBadge("Un-Confirmed", "#F97316"),
    "un-confirmed": StatusBadge("Un-Confirmed", "#F97316"),
    "cancelled": StatusBadge("Cancelled", "#DC2626"),
    "canceled": StatusBadge("Cancelled", "#DC2626"),
}

_BOOKING_STATUS: dict[str, str] = {
    "OnHold": "on-hold",
    "Pending": "pending",
    "InProgress": "in-progress",
    "Confirmed": "confirmed",
    "UnConfirmed": "unconfirmed",
    "Unconfirmed": "unconfirmed",
    "Expired": "expired",
    "Cancelled": "cancelled",
}


@dataclass(frozen=True, slots=True)
class InstantIssueState:
    issuing: bool
    failed: bool
    issued: bool


def normalize_status(raw: str | None) -> str:
    return (raw or "").strip().lower()


def _compact(status: str | None) -> str:
    return normalize_status(status).replace("-", "")


def is_processing(status: str | None) -> bool:
    return _compact(status) in _PROCESSING


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp. Naive values are read as UTC; junk returns None."""

    if not value or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_payment_time_limit_past(payment_time_limit: str | None, now: datetime | None = None) -> bool:
    deadline = parse_timestamp(payment_time_limit)
    if deadline is None:
        return False
    return deadline < (now or _utcnow())


def is_expired_hold(
    order_status: str | None, payment_time_limit: str | None, now: datetime | None = None
) -> bool:
    # OnHold is compared as the supplier's exact literal.
    return order_status == ON_HOLD and is_payment_time_limit_past(payment_time_limit, now)


def effective_status(order: Order, now: datetime | None = None) -> str:
    if is_expired_hold(order.order_status, order.payment_time_limit, now):
        return EXPIRED
    return order.order_status or ""


def get_status_badge(status: str | None) -> StatusBadge:
    badge = _BADGES.get(normalize_status(status))
    if badge is not None:
        return badge

    label = (status or "").strip()
    return StatusBadge(label or _PENDING_BADGE.label, _PENDING_BADGE.color)


def is_instant_issue(fare_type: str | None) -> bool:
    return normalize_status(fare_type) == INSTANT_ISSUE_FARE_TYPE


def instant_issue_state(fare_type: str | None, effective: str | None) -> InstantIssueState:
    if not is_instant_issue(fare_type):
        return InstantIssueState(issuing=False, failed=False, issued=False)

    compact = _compact(effective)
    return InstantIssueState(
        issuing=compact in _PROCESSING,
        failed=compact in _INSTANT_ISSUE_FAILED,
        issued=compact == "confirmed",
    )


def payment_status(effective: str | None) -> str:
    if _compact(effective) == "confirmed":
        return "Paid"
    if is_processing(effective):
        return "Processing"
    return "Unpaid"


def booking_status(raw: str | None) -> str:
    """Booking-history slug for a supplier status literal; unknown values are pending."""

    return _BOOKING_STATUS.get((raw or "").strip(), "pending")


def can_confirm_or_cancel(order: Order, now: datetime | None = None) -> bool:
    return order.order_status == ON_HOLD and effective_status(order, now) != EXPIRED


def payment_deadline_message(payment_time_limit: str | None, now: datetime | None = None) -> str:
    """Human copy for the hold deadline, in the deadline's own timezone."""

    deadline = parse_timestamp(payment_time_limit)
    if deadline is None:
        return ""

    current = (now or _utcnow()).astimezone(deadline.tzinfo)
    if deadline < current:
        return "Booking time limit has expired."

    clock = f"{deadline:%H:%M}"
    if deadline.date() == current.date():
        return f"Your booking will expire today at {clock}."
    if deadline.date() == current.date() + timedelta(days=1):
        return f"Your booking will expire tomorrow at {clock}."
    return f"Your booking will expire by {deadline.day} {deadline:%B}, {clock}."
