from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from services.api.app.models.order import Order

DEFAULT_CURRENCY = "BDT"


@dataclass(frozen=True, slots=True)
class FareComparison:
    previous_total: float | None
    latest_total: float | None
    currency: str
    difference: float | None

    @classmethod
    def between(
        cls, previous_total: float | None, latest_total: float | None, currency: str | None
    ) -> "FareComparison":
        difference = None
        if previous_total is not None and latest_total is not None:
            difference = latest_total - previous_total
        return cls(
            previous_total=previous_total,
            latest_total=latest_total,
            currency=currency or DEFAULT_CURRENCY,
            difference=difference,
        )

    @property
    def difference_label(self) -> str:
        if self.difference is None:
            return ""
        formatted = format_amount(self.difference)
        return f"+{formatted}" if self.difference >= 0 else formatted


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def has_price_changed(
    previous_total: float | None, latest_total: float | None, change_info: Any = None
) -> bool:
    """Decide whether a re-priced total needs the user's consent before committing.

    A change-info marker forces consent on its own, even with equal totals. A missing total
    on either side is unknown and does not block.
    """

    if change_info is not None:
        return True
    if previous_total is None or latest_total is None:
        return False
    return latest_total != previous_total


def has_fare_changed(previous_total: float | None, reshop_order: Order) -> bool:
    return has_price_changed(
        previous_total, reshop_order.total_payable, reshop_order.order_change_info
    )


def compare_fares(previous_order: Order | None, reshop_order: Order) -> FareComparison:
    previous_total = previous_order.total_payable if previous_order is not None else None
    currency = (previous_order.currency if previous_order is not None else None) or (
        reshop_order.currency
    )
    return FareComparison.between(previous_total, reshop_order.total_payable, currency)
