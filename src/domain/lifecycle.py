"""
Ride Lifecycle Engine
=====================

Single entry point used by the API layer and the dispatch worker.

Control flow
------------
request_ride -> queue -> accept_ride / dispatch_next -> start_ride
    -> confirm_by_rider + confirm_by_driver (any order) -> COMPLETED
cancel_ride is allowed while REQUESTED or ACCEPTED.

Concurrency
-----------
* Per-ride transitions are serialised by ``locks.hold(ride_id)``.
* The pending queue is the only cross-ride structure; its claim is atomic.
* Different rides never wait on each other.
* Saves are a compare-and-set on the ride version; a clash with another
  process is re-read and re-applied (``save_with_retry``).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .confirmation import CompletionProtocol
from .entities import (
    CompletionStatus,
    DriverProfile,
    Location,
    PendingRequest,
    Ride,
    RiderSnapshot,
    UserProfile,
)
from .enums import PaymentMethod, RideStatus, VehicleType
from .events import RideEvent, emit
from .exceptions import NotFound
from .matching import MatchingService
from .ports import (
    EventPublisher,
    ProfileDirectory,
    RewardsLedger,
    RideStore,
    save_with_retry,
)
from .queue import PendingRequestQueue
from .rewards import RewardsEngine

logger = logging.getLogger(__name__)


class RideEngine:
    def __init__(
        self,
        store: RideStore,
        directory: ProfileDirectory,
        ledger: RewardsLedger,
        events: EventPublisher,
        locks,
        *,
        queue: PendingRequestQueue | None = None,
        rewards: RewardsEngine | None = None,
        require_active_driver: bool = True,
    ):
        self.store = store
        self.directory = directory
        self.events = events
        self.locks = locks
        self.queue = queue or PendingRequestQueue()
        self.matching = MatchingService(
            store,
            directory,
            events,
            self.queue,
            locks,
            require_active_driver=require_active_driver,
        )
        self.completion = CompletionProtocol(
            store, directory, ledger, events, locks, rewards
        )

    # ── Rider side ────────────────────────────────────────────────

    async def request_ride(
        self,
        rider_id: int,
        pickup: Location,
        destination: Location,
        vehicle_type: VehicleType = VehicleType.STANDARD,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        fare: float = 0.0,
        split_fare: bool = False,
        split_with: Iterable[str] = (),
    ) -> Ride:
        rider = await self.directory.get_user(rider_id)
        if rider is None:
            raise NotFound(f"Rider {rider_id} not found")

        ride = await self.store.add(
            Ride(
                rider_id=rider_id,
                pickup=pickup,
                destination=destination,
                fare=fare,
                vehicle_type=VehicleType(vehicle_type),
                payment_method=PaymentMethod(payment_method),
                split_fare=split_fare,
                split_with=tuple(split_with),
            )
        )
        self.queue.enqueue(
            ride,
            RiderSnapshot(
                rating=rider.rating, name=rider.name, total_rides=rider.total_rides
            ),
        )
        logger.debug("Ride %s requested by rider %s", ride.id, rider_id)
        await emit(self.events, RideEvent.for_ride("ride.requested", ride))
        return ride

    async def cancel_ride(self, ride_id: int) -> Ride:
        async with self.locks.hold(ride_id):
            ride = await self._get(ride_id)
            ride = await save_with_retry(self.store, ride, Ride.cancel)
            self.queue.remove(ride_id)
        logger.debug("Ride %s canceled", ride_id)
        await emit(self.events, RideEvent.for_ride("ride.canceled", ride))
        return ride

    async def confirm_completion_by_rider(
        self, ride_id: int, rating: Optional[int] = None
    ) -> CompletionStatus:
        return await self.completion.confirm_by_rider(ride_id, rating)

    # ── Driver side ───────────────────────────────────────────────

    def list_pending_rides(
        self, driver_id: Optional[int] = None
    ) -> list[PendingRequest]:
        return self.matching.list_pending(driver_id)

    async def accept_ride(self, driver_id: int, ride_id: int) -> Ride:
        return await self.matching.accept_ride(driver_id, ride_id)

    async def reject_ride(self, driver_id: int, ride_id: int) -> None:
        await self.matching.reject_ride(driver_id, ride_id)

    async def dispatch_next(self, driver_id: int) -> Optional[Ride]:
        return await self.matching.dispatch_next(driver_id)

    async def start_ride(self, ride_id: int) -> Ride:
        async with self.locks.hold(ride_id):
            ride = await self._get(ride_id)
            ride = await save_with_retry(self.store, ride, Ride.start)
        logger.debug("Ride %s started", ride_id)
        await emit(self.events, RideEvent.for_ride("ride.started", ride))
        return ride

    async def confirm_completion_by_driver(self, ride_id: int) -> CompletionStatus:
        return await self.completion.confirm_by_driver(ride_id)

    # ── Reads ─────────────────────────────────────────────────────

    async def get_completion_status(self, ride_id: int) -> CompletionStatus:
        return await self.completion.get_status(ride_id)

    async def get_ride(self, ride_id: int) -> Ride:
        return await self._get(ride_id)

    async def list_rider_rides(self, rider_id: int, limit: int = 10) -> list[Ride]:
        return await self.store.list_for_rider(rider_id, limit)

    async def list_driver_rides(self, driver_id: int, limit: int = 10) -> list[Ride]:
        return await self.store.list_for_driver(driver_id, limit)

    async def get_user(self, user_id: int) -> UserProfile:
        user = await self.directory.get_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def get_driver(self, driver_id: int) -> DriverProfile:
        driver = await self.directory.get_driver(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        return driver

    async def list_drivers(
        self, is_active: Optional[bool] = None
    ) -> list[DriverProfile]:
        return await self.directory.list_drivers(is_active)

    # ── Startup ───────────────────────────────────────────────────

    async def restore(self) -> int:
        """Re-queue stored REQUESTED rides and settle completed leftovers.

        Returns how many rides were queued.
        """
        await self.settle_outstanding()
        restored = 0
        for ride in await self.store.list_by_status(RideStatus.REQUESTED):
            if ride.id in self.queue:
                continue
            rider = await self.directory.get_user(ride.rider_id)
            if rider is None:
                logger.warning(
                    "Skipping ride %s: rider %s not found", ride.id, ride.rider_id
                )
                continue
            self.queue.enqueue(
                ride,
                RiderSnapshot(
                    rating=rider.rating,
                    name=rider.name,
                    total_rides=rider.total_rides,
                ),
            )
            restored += 1
        if restored:
            logger.info("Restored %d pending rides", restored)
        return restored

    async def settle_outstanding(self) -> int:
        """Settle COMPLETED rides whose rewards were never applied."""
        settled = 0
        for ride in await self.store.list_by_status(RideStatus.COMPLETED):
            if not ride.needs_settlement:
                continue
            try:
                if await self.completion.settle_outstanding(ride.id):
                    settled += 1
            except Exception:
                # Already logged by the protocol; the next restart retries.
                logger.warning("Ride %s is still unsettled", ride.id)
        if settled:
            logger.info("Settled %d completed rides left over", settled)
        return settled

    async def _get(self, ride_id: int) -> Ride:
        ride = await self.store.get(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride
