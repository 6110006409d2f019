from __future__ import annotations

import argparse
import asyncio
import json

from services.api.app.services.order_api_factory import get_order_api
from services.api.app.services.order_api_mock import mock_supplier
from services.api.app.services.status import (
    can_confirm_or_cancel,
    effective_status,
    get_status_badge,
    instant_issue_state,
    payment_deadline_message,
    payment_status,
)


async def _check(reference: str) -> int:
    api = get_order_api()
    envelope = await api.retrieve(reference)
    order = envelope.order if envelope.success else None
    if order is None:
        print(f"Order {reference} not found ({api.vendor})")
        return 1

    effective = effective_status(order)
    instant = instant_issue_state(order.fare_type, effective)
    print(
        json.dumps(
            {
                "order_reference": order.order_reference,
                "order_status": order.order_status,
                "effective_status": effective,
                "badge": get_status_badge(effective).label,
                "payment_status": payment_status(effective),
                "deadline": payment_deadline_message(order.payment_time_limit),
                "can_confirm_or_cancel": can_confirm_or_cancel(order),
                "instant_issue": {
                    "issuing": instant.issuing,
                    "failed": instant.failed,
                    "issued": instant.issued,
                },
            },
            indent=2,
        )
    )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Show the derived display status of an order")
    parser.add_argument("reference", nargs="?", help="Order reference to retrieve")
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Seed an on-hold order into the mock supplier and check it",
    )
    args = parser.parse_args()

    reference = args.reference
    if args.demo:
        reference = mock_supplier.seed_order(
            {
                "orderStatus": "OnHold",
                "paymentTimeLimit": "2030-01-29T14:30:00+06:00",
                "orderItem": [
                    {"fareType": "Regular", "price": {"totalPayable": {"total": 5000, "curreny": "BDT"}}}
                ],
            }
        )

    if not reference:
        parser.error("an order reference is required unless --demo is given")

    return asyncio.run(_check(reference))


if __name__ == "__main__":
    raise SystemExit(main())
