"""Durable per-client key/value state.

Keys mirror what the booking screens keep between page loads: the last order snapshot,
the creation time per order, the traveller sync record, the celebration guard and the
booking-history sync guard.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from services.api.app.db.models import LocalStateEntry
from services.api.app.models.order import ApiEnvelope, Order
from sqlalchemy.orm import Session

ORDER_SNAPSHOT_KEY = "orderCreateResponse"
TRAVELLER_SYNC_KEY = "tripdesk-traveller-sync-state"


def creation_time_key(order_reference: str) -> str:
    return f"orderCreateTime_{order_reference}"


def celebration_key(order_reference: str) -> str:
    return f"orderCelebrated_{order_reference}"


def booking_synced_key(order_reference: str) -> str:
    return f"bookingSynced_{order_reference}"


@dataclass(frozen=True, slots=True)
class OrderSnapshot:
    """One immutable version of the cached order envelope.

    `unconfirmed` marks snapshots adopted locally (a declined fare update) that the supplier
    has not confirmed; they never stand in for a confirm call.
    """

    version: int
    source: str
    unconfirmed: bool
    envelope: dict[str, Any]

    @property
    def order(self) -> Order | None:
        return ApiEnvelope.model_validate(self.envelope).order


class LocalState:
    def __init__(self, db: Session, scope: str) -> None:
        self._db = db
        self.scope = scope

    def get(self, key: str) -> dict[str, Any] | None:
        row = self._db.get(LocalStateEntry, (self.scope, key))
        return dict(row.value_json) if row is not None else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        row = self._db.get(LocalStateEntry, (self.scope, key))
        if row is None:
            self._db.add(LocalStateEntry(scope=self.scope, key=key, value_json=value))
        else:
            # Whole-value replacement; readers see the old or the new value, never a mix.
            row.value_json = value
            row.updated_at = datetime.utcnow()
        self._db.commit()

    def delete(self, key: str) -> None:
        row = self._db.get(LocalStateEntry, (self.scope, key))
        if row is not None:
            self._db.delete(row)
            self._db.commit()

    def latest_snapshot(self) -> OrderSnapshot | None:
        value = self.get(ORDER_SNAPSHOT_KEY)
        if value is None:
            return None
        return OrderSnapshot(
            version=int(value.get("version", 0)),
            source=str(value.get("source", "")),
            unconfirmed=bool(value.get("unconfirmed", False)),
            envelope=value.get("envelope") or {},
        )

    def adopt_snapshot(
        self, envelope: ApiEnvelope, *, source: str, unconfirmed: bool = False
    ) -> OrderSnapshot:
        previous = self.latest_snapshot()
        snapshot = OrderSnapshot(
            version=(previous.version if previous else 0) + 1,
            source=source,
            unconfirmed=unconfirmed,
            envelope=envelope.to_payload(),
        )
        self.put(
            ORDER_SNAPSHOT_KEY,
            {
                "version": snapshot.version,
                "source": snapshot.source,
                "unconfirmed": snapshot.unconfirmed,
                "envelope": snapshot.envelope,
            },
        )
        return snapshot

    def cached_order(self, order_reference: str) -> tuple[Order, OrderSnapshot] | None:
        snapshot = self.latest_snapshot()
        if snapshot is None:
            return None
        order = snapshot.order
        if order is None or order.order_reference != order_reference:
            return None
        return order, snapshot

    def set_creation_time(self, order_reference: str, responded_on: str) -> None:
        self.put(creation_time_key(order_reference), {"value": responded_on})

    def creation_time(self, order_reference: str) -> str | None:
        value = self.get(creation_time_key(order_reference))
        return value.get("value") if value else None

    def clear_creation_time(self, order_reference: str) -> None:
        self.delete(creation_time_key(order_reference))

    def booking_synced(self, order_reference: str) -> bool:
        return self.get(booking_synced_key(order_reference)) is not None

    def mark_booking_synced(self, order_reference: str) -> None:
        self.put(booking_synced_key(order_reference), {"value": datetime.utcnow().isoformat()})

    def claim_celebration(self, order_reference: str) -> bool:
        """True the first time it is called for an order reference, False ever after."""

        key = celebration_key(order_reference)
        if self.get(key) is not None:
            return False
        self.put(key, {"value": datetime.utcnow().isoformat()})
        return True
