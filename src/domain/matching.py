"""
Matching Service
================

Binds one driver to one pending ride request, updating the ``Ride`` and
the ``PendingRequestQueue`` together.

Accept protocol
---------------
1. ``queue.claim(ride_id)`` -- atomic compare-and-remove.  Losing the race
   means another driver (or a cancellation) got there first:
   ``AlreadyMatched``.
2. Under the per-ride lock, re-read the ride and move it
   REQUESTED -> ACCEPTED with the driver id.  A ride canceled between the
   claim and the lock is also reported as ``AlreadyMatched``.
3. The save is a compare-and-set on the ride version, so an engine in
   another process that moved the ride first also yields ``AlreadyMatched``.
4. If persisting fails otherwise, the claimed entry goes back into the queue.

Rejections are driver-local: the ride stays REQUESTED for everyone else,
but is hidden from the rejecting driver's list and from ``dispatch_next``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional

from .entities import DriverProfile, PendingRequest, Ride
from .enums import RideStatus
from .events import DriverSummary, RideEvent, emit
from .exceptions import AlreadyMatched, ConcurrentUpdate, DriverUnavailable, NotFound
from .ports import EventPublisher, ProfileDirectory, RideStore
from .queue import PendingRequestQueue

logger = logging.getLogger(__name__)


class MatchingService:
    def __init__(
        self,
        store: RideStore,
        directory: ProfileDirectory,
        events: EventPublisher,
        queue: PendingRequestQueue,
        locks,
        require_active_driver: bool = True,
    ):
        self.store = store
        self.directory = directory
        self.events = events
        self.queue = queue
        self.locks = locks
        self.require_active_driver = require_active_driver
        self._rejections: dict[int, set[int]] = defaultdict(set)

    # ── Driver-facing views ───────────────────────────────────────

    def rejected_by(self, driver_id: int) -> frozenset[int]:
        rejected = self._rejections.get(driver_id)
        if not rejected:
            return frozenset()
        # Forget rides that have left the queue.
        rejected &= {ride_id for ride_id in rejected if ride_id in self.queue}
        return frozenset(rejected)

    def list_pending(
        self, driver_id: Optional[int] = None
    ) -> list[PendingRequest]:
        entries = self.queue.list_all()
        if driver_id is None:
            return list(entries)
        hidden = self.rejected_by(driver_id)
        return [e for e in entries if e.ride_id not in hidden]

    # ── Operations ────────────────────────────────────────────────

    async def accept_ride(self, driver_id: int, ride_id: int) -> Ride:
        driver = await self._available_driver(driver_id)

        entry = self.queue.claim(ride_id)
        if entry is None:
            if await self.store.get(ride_id) is None:
                raise NotFound(f"Ride {ride_id} not found")
            raise AlreadyMatched(f"Ride {ride_id} is no longer pending")

        return await self._commit(driver, entry)

    async def dispatch_next(self, driver_id: int) -> Optional[Ride]:
        """Give *driver_id* the best pending ride they have not rejected."""
        driver = await self._available_driver(driver_id)

        while True:
            entry = self.queue.claim_best(exclude=self.rejected_by(driver_id))
            if entry is None:
                return None
            try:
                return await self._commit(driver, entry)
            except AlreadyMatched:
                # Canceled between claim and commit; try the next one.
                logger.debug("Ride %s vanished during dispatch", entry.ride_id)

    async def reject_ride(self, driver_id: int, ride_id: int) -> None:
        if await self.store.get(ride_id) is None:
            raise NotFound(f"Ride {ride_id} not found")
        self._rejections[driver_id].add(ride_id)
        logger.debug("Driver %s rejected ride %s", driver_id, ride_id)

    # ── Internals ─────────────────────────────────────────────────

    async def _available_driver(self, driver_id: int) -> DriverProfile:
        driver = await self.directory.get_driver(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        if self.require_active_driver and not driver.is_active:
            raise DriverUnavailable(f"Driver {driver_id} is offline")
        return driver

    async def _commit(self, driver: DriverProfile, entry: PendingRequest) -> Ride:
        try:
            async with self.locks.hold(entry.ride_id):
                ride = await self.store.get(entry.ride_id)
                if ride is None:
                    raise NotFound(f"Ride {entry.ride_id} not found")
                if ride.status is not RideStatus.REQUESTED:
                    raise AlreadyMatched(
                        f"Ride {entry.ride_id} is {ride.status.value}"
                    )
                ride.assign_driver(driver.id)
                await self.store.save(ride)
        except (AlreadyMatched, NotFound):
            raise
        except ConcurrentUpdate:
            # Another engine process sharing the store saved the ride first.
            raise AlreadyMatched(
                f"Ride {entry.ride_id} was taken by another dispatcher"
            ) from None
        except Exception:
            self.queue.restore(entry)
            raise

        self._forget(entry.ride_id)
        logger.debug("Ride %s accepted by driver %s", ride.id, driver.id)
        await emit(
            self.events,
            RideEvent.for_ride(
                "ride.accepted", ride, driver=DriverSummary.from_profile(driver)
            ),
        )
        return ride

    def _forget(self, ride_id: int) -> None:
        for rejected in self._rejections.values():
            rejected.discard(ride_id)
