from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from services.api.app.models.order import Order
from services.api.app.services.status import effective_status, is_instant_issue, is_processing

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[Order | None]]


def default_interval_s() -> float:
    return float(os.getenv("TRIPDESK_INSTANT_ISSUE_POLL_S", "15"))


def needs_polling(order: Order, now: datetime | None = None) -> bool:
    return is_instant_issue(order.fare_type) and is_processing(effective_status(order, now))


class RefreshGate:
    """Refresh-in-progress flag shared by manual refreshes and the poller."""

    def __init__(self) -> None:
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @contextmanager
    def hold(self) -> Iterator[bool]:
        if self._in_flight:
            yield False
            return

        self._in_flight = True
        try:
            yield True
        finally:
            self._in_flight = False


class InstantIssuePoller:
    """Re-fetches an instant-issue order on a fixed interval while it is still processing.

    At most one timer is outstanding. Watching a different order reference cancels the old
    timer first; stop() cancels it for good. `on_settled` runs once the timer stops on its
    own (the order settled, or no order came back).
    """

    def __init__(
        self,
        fetch: Fetch,
        gate: RefreshGate | None = None,
        *,
        interval_s: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_settled: Callable[[str], None] | None = None,
    ) -> None:
        self._fetch = fetch
        self.gate = gate or RefreshGate()
        self.interval_s = default_interval_s() if interval_s is None else interval_s
        self._sleep = sleep
        self._on_settled = on_settled
        self._task: asyncio.Task | None = None

        self.order_reference: str | None = None
        self.fetches = 0

    @property
    def scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch(self, order: Order) -> bool:
        ref = order.order_reference
        if ref != self.order_reference:
            self.stop()
            self.order_reference = ref

        if not ref or not needs_polling(order):
            self.stop()
            return False

        if not self.scheduled:
            self._schedule(ref)
        return True

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _schedule(self, ref: str) -> None:
        self._task = asyncio.get_running_loop().create_task(self._tick(ref))

    async def _tick(self, ref: str) -> None:
        await self._sleep(self.interval_s)
        if ref != self.order_reference:
            return

        order: Order | None = None
        with self.gate.hold() as acquired:
            if acquired:
                self.fetches += 1
                try:
                    order = await self._fetch(ref)
                except Exception:
                    logger.exception("instant-issue poll for %s raised", ref)

        if ref != self.order_reference:
            return
        self._task = None

        if not acquired:
            logger.debug("refresh already in flight for %s; poll deferred", ref)
            self._schedule(ref)
            return

        if order is None:
            logger.warning("instant-issue poll for %s got no order; stopping", ref)
            self._settled(ref)
            return

        if self.watch(order):
            logger.debug("order %s still processing; next poll in %ss", ref, self.interval_s)
        else:
            logger.info("order %s settled at %r; polling stopped", ref, order.order_status)
            self._settled(ref)

    def _settled(self, ref: str) -> None:
        if self._on_settled is not None:
            self._on_settled(ref)


class PollerRegistry:
    """One poller and one refresh gate per order reference, kept only while in use."""

    def __init__(self) -> None:
        self._pollers: dict[str, InstantIssuePoller] = {}
        self._gates: dict[str, RefreshGate] = {}

    def __contains__(self, order_reference: str) -> bool:
        return order_reference in self._pollers or order_reference in self._gates

    def gate_for(self, order_reference: str) -> RefreshGate:
        return self._gates.setdefault(order_reference, RefreshGate())

    def is_refreshing(self, order_reference: str) -> bool:
        gate = self._gates.get(order_reference)
        return gate is not None and gate.in_flight

    @contextmanager
    def refreshing(self, order_reference: str) -> Iterator[bool]:
        """Hold the order's refresh gate; yields False when a refresh is already in flight."""

        try:
            with self.gate_for(order_reference).hold() as acquired:
                yield acquired
        finally:
            if order_reference not in self._pollers:
                self._drop_idle_gate(order_reference)

    def get(self, order_reference: str) -> InstantIssuePoller | None:
        return self._pollers.get(order_reference)

    def watch(self, order: Order, fetch: Fetch) -> bool:
        ref = order.order_reference
        if not ref:
            return False

        poller = self._pollers.get(ref)
        if poller is None:
            poller = InstantIssuePoller(fetch, self.gate_for(ref), on_settled=self._discard)
            self._pollers[ref] = poller
        if poller.watch(order):
            return True

        self._discard(ref)
        return False

    def stop(self, order_reference: str) -> None:
        poller = self._pollers.get(order_reference)
        if poller is not None:
            poller.stop()
        self._discard(order_reference)

    def stop_all(self) -> None:
        for poller in self._pollers.values():
            poller.stop()
        self._pollers.clear()
        self._gates.clear()

    def _discard(self, order_reference: str) -> None:
        self._pollers.pop(order_reference, None)
        self._drop_idle_gate(order_reference)

    def _drop_idle_gate(self, order_reference: str) -> None:
        gate = self._gates.get(order_reference)
        if gate is not None and not gate.in_flight:
            del self._gates[order_reference]


pollers = PollerRegistry()
