from __future__ import annotations

import os

from services.api.app.services.order_api_base import OrderApi
from services.api.app.services.order_api_mock import OrderApiMockAdapter


def get_order_api() -> OrderApi:
    """Select an Order API adapter based on env vars.

    Defaults to the in-memory mock so tests and local dev never reach the supplier unless
    explicitly configured to.
    """

    mode = os.getenv("TRIPDESK_ORDER_API", "mock").strip().lower()

    if mode == "mock":
        return OrderApiMockAdapter(
            reshop_drift=float(os.getenv("TRIPDESK_MOCK_RESHOP_DRIFT", "0")),
            sell_drift=float(os.getenv("TRIPDESK_MOCK_SELL_DRIFT", "0")),
        )

    if mode == "http":
        from services.api.app.services.order_api_http import OrderApiHttpAdapter

        return OrderApiHttpAdapter.from_env()

    raise ValueError(f"Unknown TRIPDESK_ORDER_API={mode!r}. Expected mock or http.")
