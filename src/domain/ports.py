"""
Abstract collaborators the engine depends on.

Storage, profile lookup, rewards bookkeeping and event transport are all
owned elsewhere; the engine only talks to these interfaces, so in-memory
and SQL backends (see ``src.infrastructure``) are interchangeable.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .entities import DriverProfile, Ride, Settlement, UserProfile
from .enums import RideStatus
from .events import RideEvent
from .exceptions import ConcurrentUpdate, NotFound

logger = logging.getLogger(__name__)


class RideStore(ABC):
    @abstractmethod
    async def add(self, ride: Ride) -> Ride:
        """Persist a new ride and return it with its id assigned."""

    @abstractmethod
    async def get(self, ride_id: int) -> Optional[Ride]: ...

    @abstractmethod
    async def save(self, ride: Ride) -> None:
        """Write *ride* back if its stored version still matches.

        Raises ``ConcurrentUpdate`` when another writer saved first, and bumps
        ``ride.version`` on success.
        """

    @abstractmethod
    async def list_by_status(self, status: RideStatus) -> list[Ride]:
        """Rides in *status*, oldest first."""

    @abstractmethod
    async def list_for_rider(self, rider_id: int, limit: int = 10) -> list[Ride]:
        """Rides requested by *rider_id*, newest first."""

    @abstractmethod
    async def list_for_driver(self, driver_id: int, limit: int = 10) -> list[Ride]:
        """Rides driven by *driver_id*, newest first."""


class ProfileDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserProfile]: ...

    @abstractmethod
    async def get_driver(self, driver_id: int) -> Optional[DriverProfile]: ...

    @abstractmethod
    async def list_active_drivers(self) -> list[DriverProfile]:
        """Online drivers, highest rated first."""

    @abstractmethod
    async def list_drivers(
        self, is_active: Optional[bool] = None
    ) -> list[DriverProfile]:
        """All drivers, or only those whose online flag equals *is_active*."""


class RewardsLedger(ABC):
    @abstractmethod
    async def award_points(self, user_id: int, amount: int) -> None: ...

    @abstractmethod
    async def apply_rating(self, driver_id: int, rating: int) -> None:
        """Fold *rating* into the driver's running average."""

    @abstractmethod
    async def increment_rides(self, user_id: int) -> None: ...

    @abstractmethod
    async def settle_ride(self, settlement: Settlement) -> bool:
        """Apply a finalized ride's points, counters and rating atomically.

        Idempotent per ride: returns ``False`` if the ride was already settled.
        """


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, ride_id: int, event: RideEvent) -> None: ...


async def save_with_retry(
    store: RideStore,
    ride: Ride,
    change: Callable[[Ride], Any],
    attempts: int = 3,
) -> Ride:
    """Apply *change* to *ride* and save it, re-reading on a version clash.

    *change* may be a plain function or a coroutine function; it runs again
    against the fresh copy after each ``ConcurrentUpdate``.  Returns the ride
    as saved.
    """
    ride_id = ride.id
    for attempt in range(1, attempts + 1):
        outcome = change(ride)
        if inspect.isawaitable(outcome):
            await outcome
        try:
            await store.save(ride)
            return ride
        except ConcurrentUpdate:
            if attempt == attempts:
                raise
            logger.info("Ride %s changed while saving; re-reading", ride_id)
            ride = await store.get(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
    return ride
