from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError
from services.api.app.models.order import ApiEnvelope
from services.api.app.services.order_api_base import OrderApiConfigError, OrderApiTransportError

logger = logging.getLogger(__name__)

_PATHS = {
    "retrieve": "/OrderRetrieve",
    "reshop": "/OrderReshopPrice",
    "confirm": "/OrderConfirm",
    "cancel": "/OrderCancel",
    "sell": "/OrderSell",
    "create": "/OrderCreate",
}


@dataclass(frozen=True, slots=True)
class _HttpConfig:
    base_url: str
    username: str
    password: str
    timeout_s: float
    verify_tls: bool


class OrderApiHttpAdapter:
    """Order API adapter talking JSON over HTTP with basic auth.

    Env vars:
    - TRIPDESK_ORDER_API=http
    - TRIPDESK_ORDER_API_BASE_URL (required)
    - TRIPDESK_ORDER_API_USERNAME / TRIPDESK_ORDER_API_PASSWORD
    - TRIPDESK_ORDER_API_TIMEOUT_S (default: 45)
    - TRIPDESK_ORDER_API_VERIFY_TLS (default: true)

    Non-2xx responses that still carry a JSON envelope are returned as that envelope so the
    caller can show the supplier's message. Anything else raises OrderApiTransportError.
    """

    vendor = "ORDER_API_HTTP"

    def __init__(self, cfg: _HttpConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._cfg = cfg
        self._transport = transport

    @classmethod
    def from_env(cls) -> "OrderApiHttpAdapter":
        base_url = os.getenv("TRIPDESK_ORDER_API_BASE_URL", "").strip().rstrip("/")
        if not base_url:
            raise OrderApiConfigError("TRIPDESK_ORDER_API_BASE_URL")

        return cls(
            _HttpConfig(
                base_url=base_url,
                username=os.getenv("TRIPDESK_ORDER_API_USERNAME", ""),
                password=os.getenv("TRIPDESK_ORDER_API_PASSWORD", ""),
                timeout_s=float(os.getenv("TRIPDESK_ORDER_API_TIMEOUT_S", "45")),
                verify_tls=_parse_bool(os.getenv("TRIPDESK_ORDER_API_VERIFY_TLS", "true")),
            )
        )

    async def retrieve(self, order_reference: str) -> ApiEnvelope:
        return await self._post("retrieve", {"orderReference": order_reference})

    async def reshop(self, order_reference: str) -> ApiEnvelope:
        return await self._post("reshop", {"orderReference": order_reference})

    async def confirm(self, order_reference: str) -> ApiEnvelope:
        return await self._post("confirm", {"orderReference": order_reference})

    async def cancel(self, order_reference: str) -> ApiEnvelope:
        return await self._post("cancel", {"orderReference": order_reference})

    async def sell(self, request: dict[str, Any]) -> ApiEnvelope:
        return await self._post("sell", _offer_body(request))

    async def create(self, request: dict[str, Any]) -> ApiEnvelope:
        return await self._post("create", _offer_body(request))

    async def _post(self, operation: str, body: dict[str, Any]) -> ApiEnvelope:
        url = f"{self._cfg.base_url}{_PATHS[operation]}"
        auth = httpx.BasicAuth(self._cfg.username, self._cfg.password)
        headers = {"Accept": "application/json", "Content-Type": "application/json"}

        logger.debug("order api %s -> %s", operation, url)
        try:
            async with httpx.AsyncClient(
                timeout=self._cfg.timeout_s,
                verify=self._cfg.verify_tls,
                transport=self._transport,
            ) as client:
                r = await client.post(url, headers=headers, json=body, auth=auth)
        except httpx.HTTPError as e:
            logger.error("order api %s transport error: %s", operation, e)
            raise OrderApiTransportError(operation, str(e)) from e

        try:
            data = r.json()
        except ValueError as e:
            logger.error("order api %s returned non-JSON body (HTTP %s)", operation, r.status_code)
            raise OrderApiTransportError(operation, f"unparseable response (HTTP {r.status_code})") from e

        if not isinstance(data, dict):
            raise OrderApiTransportError(operation, f"unexpected response shape (HTTP {r.status_code})")

        try:
            envelope = ApiEnvelope.model_validate(data)
        except ValidationError as e:
            raise OrderApiTransportError(operation, f"invalid envelope: {e.error_count()} error(s)") from e

        if r.is_error:
            logger.warning("order api %s HTTP %s success=%s", operation, r.status_code, envelope.success)
        return envelope


def _offer_body(request: dict[str, Any]) -> dict[str, Any]:
    return {
        "TraceId": request.get("traceId"),
        "OfferId": request.get("offerId"),
        "request": request.get("request"),
    }


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}
