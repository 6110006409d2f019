"""Shared order card payload schema (v1).

The booking screens render an order from this payload alone: the badge, banners and which
actions are enabled are decided server-side so every client shows the same thing.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OrderCardActionTypeV1(str, Enum):
    CONFIRM = "CONFIRM"
    CANCEL = "CANCEL"
    REFRESH = "REFRESH"


class OrderBannerTypeV1(str, Enum):
    INSTANT_ISSUING = "INSTANT_ISSUING"
    INSTANT_ISSUE_FAILED = "INSTANT_ISSUE_FAILED"
    INSTANT_ISSUED = "INSTANT_ISSUED"
    PAYMENT_DEADLINE = "PAYMENT_DEADLINE"
    SNAPSHOT_UNCONFIRMED = "SNAPSHOT_UNCONFIRMED"


class StatusBadgeV1(BaseModel):
    label: str
    color: str


class OrderCardActionV1(BaseModel):
    type: OrderCardActionTypeV1
    label: str
    enabled: bool = True


class OrderBannerV1(BaseModel):
    type: OrderBannerTypeV1
    message: str


class OrderCardV1(BaseModel):
    version: str = "1"

    order_reference: str
    # Supplier status, untouched. effective_status is what to display and gate on.
    order_status: str
    effective_status: str
    badge: StatusBadgeV1
    payment_status: str

    payment_time_limit: str | None = None
    fare_type: str | None = None
    total: float | None = None
    currency: str

    created_on: str | None = None
    source: str
    snapshot_version: int | None = None

    celebrate: bool = False
    polling: bool = False

    actions: list[OrderCardActionV1] = Field(default_factory=list, max_length=4)
    banners: list[OrderBannerV1] = Field(default_factory=list, max_length=8)
    warnings: list[str] = Field(default_factory=list, max_length=8)

    order: dict[str, Any] = Field(default_factory=dict)
