from __future__ import annotations

from typing import Any, Protocol

from services.api.app.models.order import ApiEnvelope, ApiError

NETWORK_ERROR_MESSAGE = (
    "Unable to reach the booking service. Please check your connection and try again."
)


class OrderApiError(Exception):
    """Base class for Order API adapter errors."""


class OrderApiConfigError(OrderApiError):
    def __init__(self, missing: str) -> None:
        super().__init__(f"Order API is not configured. Set {missing}.")
        self.missing = missing


class OrderApiTransportError(OrderApiError):
    """The request never produced a usable envelope (network failure, timeout, bad JSON)."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


class OrderApi(Protocol):
    vendor: str

    async def retrieve(self, order_reference: str) -> ApiEnvelope: ...

    async def reshop(self, order_reference: str) -> ApiEnvelope: ...

    async def confirm(self, order_reference: str) -> ApiEnvelope: ...

    async def cancel(self, order_reference: str) -> ApiEnvelope: ...

    async def sell(self, request: dict[str, Any]) -> ApiEnvelope: ...

    async def create(self, request: dict[str, Any]) -> ApiEnvelope: ...


def best_error_message(envelope: ApiEnvelope | None, fallback: str) -> str:
    """Pick the most specific human-readable failure message an envelope carries."""

    if envelope is None:
        return fallback

    error = envelope.error
    candidates: list[Any] = []
    if isinstance(error, ApiError):
        candidates.append(error.error_message)
    elif isinstance(error, str):
        candidates.append(error)
    # Some endpoints put errorMessage at the top level.
    candidates.append((envelope.model_extra or {}).get("errorMessage"))
    candidates.extend([envelope.message, envelope.details])

    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return fallback
