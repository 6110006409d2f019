"""Order confirmation state machine.

A confirmation session takes an on-hold order through fare revalidation and the final
confirm call:

    preparing -> revalidating -> confirming -> finalizing -> success
                 revalidating -> fareUpdateRequired -> (accept) finalizing
                 revalidating | finalizing -> error

Steps and the triggers between them are a fixed table (TRANSITIONS). Pacing between steps
lives in ConfirmationPacing and only ever runs between transitions, never around the remote
calls themselves, so tests can run with zero dwell without changing call order.

Remote calls are strictly sequential within a session: reshop is awaited and evaluated
before confirm is ever issued. Closing a session bumps its generation; any call still in
flight when that happens completes, but its result is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from services.api.app.models.order import ApiEnvelope, Order
from services.api.app.services.fare import FareComparison, compare_fares, has_fare_changed
from services.api.app.services.order_api_base import (
    NETWORK_ERROR_MESSAGE,
    OrderApi,
    OrderApiTransportError,
    best_error_message,
)

logger = logging.getLogger(__name__)

RESHOP_FALLBACK_MESSAGE = "Failed to revalidate fare"
CONFIRM_FALLBACK_MESSAGE = "Failed to confirm order"


class ConfirmStep(str, Enum):
    PREPARING = "preparing"
    REVALIDATING = "revalidating"
    CONFIRMING = "confirming"
    FINALIZING = "finalizing"
    FARE_UPDATE_REQUIRED = "fareUpdateRequired"
    SUCCESS = "success"
    ERROR = "error"


class ConfirmTrigger(str, Enum):
    START = "start"
    DWELL_ELAPSED = "dwell_elapsed"
    RESHOP_UNCHANGED = "reshop_unchanged"
    RESHOP_CHANGED = "reshop_changed"
    RESHOP_FAILED = "reshop_failed"
    CONFIRM_SUCCEEDED = "confirm_succeeded"
    CONFIRM_FAILED = "confirm_failed"
    ACCEPT_FARE = "accept_fare"
    DECLINE_FARE = "decline_fare"
    CLOSE = "close"


STEP_LABELS: dict[ConfirmStep, str] = {
    ConfirmStep.PREPARING: "Preparing…",
    ConfirmStep.REVALIDATING: "Revalidating fare…",
    ConfirmStep.CONFIRMING: "Confirming price…",
    ConfirmStep.FINALIZING: "Finalizing booking…",
    ConfirmStep.FARE_UPDATE_REQUIRED: "Price update notice",
    ConfirmStep.SUCCESS: "Booking confirmed!",
    ConfirmStep.ERROR: "Error",
}

# None stands for "no open session" on either side of a transition.
TRANSITIONS: dict[tuple[ConfirmStep | None, ConfirmTrigger], ConfirmStep | None] = {
    (None, ConfirmTrigger.START): ConfirmStep.PREPARING,
    (ConfirmStep.PREPARING, ConfirmTrigger.DWELL_ELAPSED): ConfirmStep.REVALIDATING,
    (ConfirmStep.REVALIDATING, ConfirmTrigger.RESHOP_UNCHANGED): ConfirmStep.CONFIRMING,
    (ConfirmStep.REVALIDATING, ConfirmTrigger.RESHOP_CHANGED): ConfirmStep.FARE_UPDATE_REQUIRED,
    (ConfirmStep.REVALIDATING, ConfirmTrigger.RESHOP_FAILED): ConfirmStep.ERROR,
    (ConfirmStep.CONFIRMING, ConfirmTrigger.DWELL_ELAPSED): ConfirmStep.FINALIZING,
    (ConfirmStep.FINALIZING, ConfirmTrigger.CONFIRM_SUCCEEDED): ConfirmStep.SUCCESS,
    (ConfirmStep.FINALIZING, ConfirmTrigger.CONFIRM_FAILED): ConfirmStep.ERROR,
    (ConfirmStep.FARE_UPDATE_REQUIRED, ConfirmTrigger.ACCEPT_FARE): ConfirmStep.FINALIZING,
    (ConfirmStep.FARE_UPDATE_REQUIRED, ConfirmTrigger.DECLINE_FARE): None,
    (ConfirmStep.SUCCESS, ConfirmTrigger.DWELL_ELAPSED): None,
    **{(step, ConfirmTrigger.CLOSE): None for step in ConfirmStep},
}


class InvalidTransitionError(Exception):
    def __init__(self, from_step: ConfirmStep | None, trigger: ConfirmTrigger) -> None:
        current = from_step.value if from_step is not None else "closed"
        super().__init__(f"Cannot apply {trigger.value!r} to a confirmation that is {current}")
        self.from_step = from_step
        self.trigger = trigger


def next_step(step: ConfirmStep | None, trigger: ConfirmTrigger) -> ConfirmStep | None:
    key = (step, trigger)
    if key not in TRANSITIONS:
        raise InvalidTransitionError(step, trigger)
    return TRANSITIONS[key]


@dataclass(frozen=True, slots=True)
class ConfirmationPacing:
    """Minimum time each step stays on screen, and how long success lingers before closing."""

    dwell_s: float = 1.0
    success_close_s: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_env(cls) -> "ConfirmationPacing":
        return cls(
            dwell_s=int(os.getenv("TRIPDESK_CONFIRM_DWELL_MS", "1000")) / 1000,
            success_close_s=int(os.getenv("TRIPDESK_CONFIRM_SUCCESS_CLOSE_MS", "2000")) / 1000,
        )

    async def dwell(self) -> None:
        if self.dwell_s > 0:
            await self.sleep(self.dwell_s)

    async def before_close(self) -> None:
        if self.success_close_s > 0:
            await self.sleep(self.success_close_s)


@dataclass(slots=True)
class ConfirmationHooks:
    on_step: Callable[["ConfirmationSession", ConfirmTrigger, ConfirmStep | None], None] | None = None
    # Celebration and order refresh after a successful confirm.
    on_success: Callable[["ConfirmationSession"], Awaitable[None]] | None = None
    # Called with the reshop envelope when the user declines the updated fare.
    adopt_snapshot: Callable[[ApiEnvelope], None] | None = None


class ConfirmationSession:
    def __init__(
        self,
        order: Order,
        api: OrderApi,
        *,
        pacing: ConfirmationPacing | None = None,
        hooks: ConfirmationHooks | None = None,
    ) -> None:
        if not order.order_reference:
            raise ValueError("order has no orderReference")

        self.order_reference = order.order_reference
        self.order = order
        self.hooks = hooks or ConfirmationHooks()

        self.step: ConfirmStep | None = None
        self.error_message: str | None = None
        self.reshop_result: ApiEnvelope | None = None
        self.fare_comparison: FareComparison | None = None
        self.trail: list[ConfirmStep] = []
        self.action_in_progress = False

        self._api = api
        self._pacing = pacing or ConfirmationPacing()
        self._generation = 0
        self._started = False

    @property
    def is_open(self) -> bool:
        return self.step is not None

    @property
    def closed(self) -> bool:
        return self._started and self.step is None

    @property
    def label(self) -> str | None:
        return STEP_LABELS.get(self.step) if self.step is not None else None

    async def start(self) -> ConfirmStep | None:
        """Run from preparing to the next resting step (fare update, error or closed)."""

        if self.action_in_progress or self.step is not None:
            logger.debug("confirmation %s already running; start ignored", self.order_reference)
            return self.step

        generation = self._generation
        self._started = True
        self.error_message = None
        self.reshop_result = None
        self.fare_comparison = None
        self.trail = []
        self._apply(ConfirmTrigger.START)

        self.action_in_progress = True
        try:
            await self._revalidate(generation)
        finally:
            if self._is_current(generation):
                self.action_in_progress = False
        return self.step

    async def accept_fare(self) -> ConfirmStep | None:
        if self.action_in_progress:
            logger.debug("confirmation %s busy; accept ignored", self.order_reference)
            return self.step

        generation = self._generation
        self._apply(ConfirmTrigger.ACCEPT_FARE)
        self.reshop_result = None

        self.action_in_progress = True
        try:
            await self._pacing.dwell()
            if self._is_current(generation):
                await self._finalize(generation)
        finally:
            if self._is_current(generation):
                self.action_in_progress = False
        return self.step

    def decline_fare(self) -> Order | None:
        """Keep the re-priced order as the local snapshot and close without confirming."""

        reshop = self.reshop_result
        self._apply(ConfirmTrigger.DECLINE_FARE)
        if reshop is None:
            return None

        if self.hooks.adopt_snapshot is not None:
            self.hooks.adopt_snapshot(reshop)
        return reshop.order

    def close(self) -> None:
        if self.step is None:
            return
        self._apply(ConfirmTrigger.CLOSE)

    def _is_current(self, generation: int) -> bool:
        return self._generation == generation and self.step is not None

    def _apply(self, trigger: ConfirmTrigger) -> None:
        previous = self.step
        self.step = next_step(previous, trigger)

        if self.step is None:
            self._generation += 1
            self.action_in_progress = False
            self.reshop_result = None
        else:
            self.trail.append(self.step)

        logger.info(
            "confirmation %s: %s --%s--> %s",
            self.order_reference,
            previous.value if previous else "closed",
            trigger.value,
            self.step.value if self.step else "closed",
        )
        if self.hooks.on_step is not None:
            self.hooks.on_step(self, trigger, previous)

    def _fail(self, trigger: ConfirmTrigger, message: str) -> None:
        logger.warning("confirmation %s failed: %s", self.order_reference, message)
        self.error_message = message
        self._apply(trigger)

    async def _revalidate(self, generation: int) -> None:
        await self._pacing.dwell()
        if not self._is_current(generation):
            return
        self._apply(ConfirmTrigger.DWELL_ELAPSED)

        try:
            envelope = await self._api.reshop(self.order_reference)
        except OrderApiTransportError as e:
            logger.error("reshop %s: %s", self.order_reference, e)
            if self._is_current(generation):
                self._fail(ConfirmTrigger.RESHOP_FAILED, NETWORK_ERROR_MESSAGE)
            return

        if not self._is_current(generation):
            logger.info("confirmation %s closed during reshop; result dropped", self.order_reference)
            return

        reshop_order = envelope.order if envelope.success else None
        if reshop_order is None:
            self._fail(
                ConfirmTrigger.RESHOP_FAILED, best_error_message(envelope, RESHOP_FALLBACK_MESSAGE)
            )
            return

        await self._pacing.dwell()
        if not self._is_current(generation):
            return

        if has_fare_changed(self.order.total_payable, reshop_order):
            self.reshop_result = envelope
            self.fare_comparison = compare_fares(self.order, reshop_order)
            self._apply(ConfirmTrigger.RESHOP_CHANGED)
            return

        self._apply(ConfirmTrigger.RESHOP_UNCHANGED)
        await self._pacing.dwell()
        if not self._is_current(generation):
            return
        self._apply(ConfirmTrigger.DWELL_ELAPSED)
        await self._finalize(generation)

    async def _finalize(self, generation: int) -> None:
        try:
            envelope = await self._api.confirm(self.order_reference)
        except OrderApiTransportError as e:
            logger.error("confirm %s: %s", self.order_reference, e)
            if self._is_current(generation):
                self._fail(ConfirmTrigger.CONFIRM_FAILED, NETWORK_ERROR_MESSAGE)
            return

        if not self._is_current(generation):
            logger.info("confirmation %s closed during confirm; result dropped", self.order_reference)
            return

        if not envelope.success:
            self._fail(
                ConfirmTrigger.CONFIRM_FAILED, best_error_message(envelope, CONFIRM_FALLBACK_MESSAGE)
            )
            return

        self._apply(ConfirmTrigger.CONFIRM_SUCCEEDED)
        if self.hooks.on_success is not None:
            await self.hooks.on_success(self)
        self.action_in_progress = False

        await self._pacing.before_close()
        if self._is_current(generation) and self.step is ConfirmStep.SUCCESS:
            self._apply(ConfirmTrigger.DWELL_ELAPSED)


class OrderActionBusyError(Exception):
    def __init__(self, order_reference: str) -> None:
        super().__init__(f"Another action is already in progress for order {order_reference}")
        self.order_reference = order_reference


class ConfirmationRegistry:
    """At most one open confirmation session per order reference.

    Cancelling shares the same busy flag: an order cannot be cancelled while its
    confirmation is mid-call, and a confirmation cannot open while a cancel is in flight.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ConfirmationSession] = {}
        self._cancelling: set[str] = set()

    @contextmanager
    def cancelling(self, order_reference: str) -> Iterator[None]:
        session = self.get(order_reference)
        if order_reference in self._cancelling or (
            session is not None and session.action_in_progress
        ):
            raise OrderActionBusyError(order_reference)

        self._cancelling.add(order_reference)
        try:
            yield
        finally:
            self._cancelling.discard(order_reference)

    def get(self, order_reference: str) -> ConfirmationSession | None:
        session = self._sessions.get(order_reference)
        if session is not None and session.closed:
            del self._sessions[order_reference]
            return None
        return session

    def open(
        self, order_reference: str, factory: Callable[[], ConfirmationSession]
    ) -> tuple[ConfirmationSession, bool]:
        existing = self.get(order_reference)
        if existing is not None:
            return existing, False
        if order_reference in self._cancelling:
            raise OrderActionBusyError(order_reference)

        session = factory()
        self._sessions[order_reference] = session
        return session, True

    def clear(self) -> None:
        for session in self._sessions.values():
            # Request-scoped hooks are stale by now.
            session.hooks = ConfirmationHooks()
            session.close()
        self._sessions.clear()
        self._cancelling.clear()


confirmations = ConfirmationRegistry()
