"""
Dual-Confirmation Protocol
==========================

A ride is finalized only once **both** the rider and the driver have said
"we're done", in either order and with any delay in between.

Each confirmation runs under the ride's lock and performs a single
check-and-transition: set the caller's flag, and if both flags are now set
and the ride is not yet COMPLETED, finalize it.  Two confirmations racing
each other therefore finalize exactly once.

Finalization side effects (once per ride), applied by
``RewardsLedger.settle_ride`` in one step:

* points for the rider (``RewardsEngine.points_for``),
* both parties' completed-ride counters,
* the rider's stored rating folded into the driver's average.

The priority-rider bonus (``RewardsEngine.bonus_for``) is recorded on the
ride itself.

The COMPLETED ride is saved before it is settled and carries a ``settled``
flag.  If the ledger call fails, the ride stays COMPLETED but unsettled;
the next confirmation of that ride (or ``RideEngine.restore``) settles it,
and ``ride.completed`` is only published once settlement went through.
The ledger ignores a ride it has already settled.
"""

from __future__ import annotations

import logging
from typing import Optional

from .entities import CompletionStatus, Ride, Settlement
from .enums import RideStatus
from .events import CompletionPayload, RideEvent, emit
from .exceptions import NotFound
from .ports import (
    EventPublisher,
    ProfileDirectory,
    RewardsLedger,
    RideStore,
    save_with_retry,
)
from .rewards import RewardsEngine

logger = logging.getLogger(__name__)


class CompletionProtocol:
    def __init__(
        self,
        store: RideStore,
        directory: ProfileDirectory,
        ledger: RewardsLedger,
        events: EventPublisher,
        locks,
        rewards: RewardsEngine | None = None,
    ):
        self.store = store
        self.directory = directory
        self.ledger = ledger
        self.events = events
        self.locks = locks
        self.rewards = rewards or RewardsEngine()

    async def confirm_by_rider(
        self, ride_id: int, rating: Optional[int] = None
    ) -> CompletionStatus:
        return await self._confirm(
            ride_id, lambda ride: ride.confirm_by_rider(rating)
        )

    async def confirm_by_driver(self, ride_id: int) -> CompletionStatus:
        return await self._confirm(ride_id, lambda ride: ride.confirm_by_driver())

    async def get_status(self, ride_id: int) -> CompletionStatus:
        ride = await self.store.get(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride.completion_status()

    async def settle_outstanding(self, ride_id: int) -> bool:
        """Settle *ride_id* if it is COMPLETED but its rewards never landed."""
        async with self.locks.hold(ride_id):
            ride = await self.store.get(ride_id)
            if ride is None or not ride.needs_settlement:
                return False
            ride = await self._settle(ride)
        await self._emit_completed(ride)
        return True

    # ── Internals ─────────────────────────────────────────────────

    async def _confirm(self, ride_id: int, mark) -> CompletionStatus:
        finalized = False

        async def apply(ride: Ride) -> None:
            nonlocal finalized
            mark(ride)
            finalized = (
                ride.both_completed and ride.status is not RideStatus.COMPLETED
            )
            if finalized:
                await self._finalize(ride)

        async with self.locks.hold(ride_id):
            ride = await self.store.get(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")

            retrying = ride.needs_settlement
            if not retrying:
                ride = await save_with_retry(self.store, ride, apply)
            if retrying or finalized:
                ride = await self._settle(ride)

        status = ride.completion_status()
        if not retrying:
            await emit(
                self.events,
                RideEvent.for_ride(
                    "ride.confirmation_received",
                    ride,
                    completion=CompletionPayload.from_status(status),
                ),
            )
        if retrying or finalized:
            await self._emit_completed(ride)
        return status

    async def _finalize(self, ride: Ride) -> None:
        rider = await self.directory.get_user(ride.rider_id)
        rider_rating = rider.rating if rider else 0.0
        ride.finalize(
            points=self.rewards.points_for(ride),
            bonus=self.rewards.bonus_for(ride, rider_rating),
        )
        logger.info(
            "Ride %s completed: %d points, bonus %.2f",
            ride.id,
            ride.points_earned,
            ride.driver_bonus,
        )

    async def _settle(self, ride: Ride) -> Ride:
        """Push the finalized outcome to the rewards ledger, then flag it."""
        try:
            applied = await self.ledger.settle_ride(Settlement.for_ride(ride))
        except Exception:
            logger.exception(
                "Settling ride %s failed; it stays completed and unsettled",
                ride.id,
            )
            raise
        if not applied:
            logger.warning("Ride %s was already settled by the ledger", ride.id)
        return await save_with_retry(self.store, ride, _mark_settled)

    async def _emit_completed(self, ride: Ride) -> None:
        await emit(
            self.events,
            RideEvent.for_ride(
                "ride.completed",
                ride,
                completion=CompletionPayload.from_status(ride.completion_status()),
                points_earned=ride.points_earned,
                driver_bonus=ride.driver_bonus,
            ),
        )


def _mark_settled(ride: Ride) -> None:
    ride.settled = True
