"""
In-memory storage backend.

Default backend for local runs and tests.  Rides are deep-copied in and
out so the engine never shares a mutable ``Ride`` with the store; a failed
transition therefore leaves the stored copy untouched.
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, replace
from typing import Optional

from src.domain.entities import DriverProfile, Ride, Settlement, UserProfile
from src.domain.enums import RideStatus
from src.domain.exceptions import ConcurrentUpdate
from src.domain.ports import ProfileDirectory, RewardsLedger, RideStore


class InMemoryRideStore(RideStore):
    def __init__(self):
        self._rides: dict[int, Ride] = {}
        self._ids = itertools.count(1)

    async def add(self, ride: Ride) -> Ride:
        ride = copy.deepcopy(ride)
        ride.id = next(self._ids)
        self._rides[ride.id] = ride
        return copy.deepcopy(ride)

    async def get(self, ride_id: int) -> Optional[Ride]:
        ride = self._rides.get(ride_id)
        return copy.deepcopy(ride) if ride else None

    async def save(self, ride: Ride) -> None:
        stored = self._rides.get(ride.id)
        if stored is None:
            raise KeyError(f"Ride {ride.id} was never added")
        if stored.version != ride.version:
            raise ConcurrentUpdate(
                f"Ride {ride.id} changed since it was read "
                f"(version {ride.version}, stored {stored.version})"
            )
        ride.version += 1
        self._rides[ride.id] = copy.deepcopy(ride)

    async def list_by_status(self, status: RideStatus) -> list[Ride]:
        rides = [r for r in self._rides.values() if r.status is status]
        rides.sort(key=lambda r: (r.created_at, r.id))
        return [copy.deepcopy(r) for r in rides]

    async def list_for_rider(self, rider_id: int, limit: int = 10) -> list[Ride]:
        return self._newest(lambda r: r.rider_id == rider_id, limit)

    async def list_for_driver(self, driver_id: int, limit: int = 10) -> list[Ride]:
        return self._newest(lambda r: r.driver_id == driver_id, limit)

    def _newest(self, predicate, limit: int) -> list[Ride]:
        rides = [r for r in self._rides.values() if predicate(r)]
        rides.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [copy.deepcopy(r) for r in rides[:limit]]

    def __len__(self) -> int:
        return len(self._rides)


@dataclass
class _Driver:
    id: int
    user_id: int
    vehicle: str
    license_plate: str
    is_active: bool = True


class InMemoryAccounts(ProfileDirectory, RewardsLedger):
    """Users, drivers and their points / ratings / ride counters."""

    def __init__(self, points_per_level: int = 1000):
        self.points_per_level = points_per_level
        self._users: dict[int, UserProfile] = {}
        self._drivers: dict[int, _Driver] = {}
        self._user_ids = itertools.count(1)
        self._driver_ids = itertools.count(1)
        self._settled_rides: set[int] = set()

    # ── Registration ──────────────────────────────────────────────

    def add_user(
        self, name: str, rating: float = 5.0, total_rides: int = 0, points: int = 0
    ) -> UserProfile:
        user = UserProfile(
            id=next(self._user_ids),
            name=name,
            rating=rating,
            total_rides=total_rides,
            points=points,
            level=points // self.points_per_level + 1,
        )
        self._users[user.id] = user
        return user

    def add_driver(
        self,
        user_id: int,
        vehicle: str,
        license_plate: str,
        is_active: bool = True,
    ) -> DriverProfile:
        if user_id not in self._users:
            raise KeyError(f"User {user_id} not found")
        driver = _Driver(
            id=next(self._driver_ids),
            user_id=user_id,
            vehicle=vehicle,
            license_plate=license_plate,
            is_active=is_active,
        )
        self._drivers[driver.id] = driver
        return self._profile(driver)

    def set_driver_active(self, driver_id: int, is_active: bool) -> None:
        self._drivers[driver_id].is_active = is_active

    # ── ProfileDirectory ──────────────────────────────────────────

    async def get_user(self, user_id: int) -> Optional[UserProfile]:
        return self._users.get(user_id)

    async def get_driver(self, driver_id: int) -> Optional[DriverProfile]:
        driver = self._drivers.get(driver_id)
        return self._profile(driver) if driver else None

    async def list_active_drivers(self) -> list[DriverProfile]:
        return await self.list_drivers(is_active=True)

    async def list_drivers(
        self, is_active: Optional[bool] = None
    ) -> list[DriverProfile]:
        drivers = [
            self._profile(d)
            for d in self._drivers.values()
            if is_active is None or d.is_active is is_active
        ]
        return sorted(drivers, key=lambda d: d.rating, reverse=True)

    # ── RewardsLedger ─────────────────────────────────────────────

    async def award_points(self, user_id: int, amount: int) -> None:
        user = self._require_user(user_id)
        self._users[user_id] = self._with_points(user, amount)

    async def apply_rating(self, driver_id: int, rating: int) -> None:
        user = self._require_user(self._require_driver(driver_id).user_id)
        self._users[user.id] = _with_rating(user, rating)

    async def increment_rides(self, user_id: int) -> None:
        user = self._require_user(user_id)
        self._users[user_id] = replace(user, total_rides=user.total_rides + 1)

    async def settle_ride(self, settlement: Settlement) -> bool:
        if settlement.ride_id in self._settled_rides:
            return False
        # Stage every change first so a missing profile leaves nothing applied.
        users = dict(self._users)
        rider = self._require_user(settlement.rider_id)
        users[rider.id] = replace(
            self._with_points(rider, settlement.points),
            total_rides=rider.total_rides + 1,
        )
        if settlement.driver_id is not None:
            user_id = self._require_driver(settlement.driver_id).user_id
            if user_id not in users:
                raise KeyError(f"User {user_id} not found")
            user = users[user_id]
            user = replace(user, total_rides=user.total_rides + 1)
            if settlement.rating is not None:
                user = _with_rating(user, settlement.rating)
            users[user_id] = user
        self._users = users
        self._settled_rides.add(settlement.ride_id)
        return True

    # ── Internals ─────────────────────────────────────────────────

    def _with_points(self, user: UserProfile, amount: int) -> UserProfile:
        points = user.points + amount
        return replace(
            user,
            points=points,
            level=max(user.level, points // self.points_per_level + 1),
        )

    def _require_user(self, user_id: int) -> UserProfile:
        user = self._users.get(user_id)
        if user is None:
            raise KeyError(f"User {user_id} not found")
        return user

    def _require_driver(self, driver_id: int) -> _Driver:
        driver = self._drivers.get(driver_id)
        if driver is None:
            raise KeyError(f"Driver {driver_id} not found")
        return driver

    def _profile(self, driver: _Driver) -> DriverProfile:
        user = self._users[driver.user_id]
        return DriverProfile(
            id=driver.id,
            user_id=driver.user_id,
            name=user.name,
            vehicle=driver.vehicle,
            license_plate=driver.license_plate,
            rating=user.rating,
            total_rides=user.total_rides,
            is_active=driver.is_active,
        )


def _with_rating(user: UserProfile, rating: int) -> UserProfile:
    """Fold *rating* into the running average over ``user.total_rides``."""
    n = user.total_rides or 1
    average = (user.rating * (n - 1) + rating) / n
    return replace(user, rating=round(average, 2))
