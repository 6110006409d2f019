from __future__ import annotations

from pydantic import BaseModel, Field
from services.api.app.models.booking import FareComparisonOut


class ConfirmationView(BaseModel):
    order_reference: str
    # None once the session has closed (declined, dismissed, or success auto-close).
    step: str | None = None
    label: str | None = None
    open: bool
    error_message: str | None = None
    fare_comparison: FareComparisonOut | None = None
    trail: list[str] = Field(default_factory=list)
    action_in_progress: bool = False


class CancelOrderResponse(BaseModel):
    success: bool
    message: str | None = None
