"""
Repository Pattern -- SQL implementations of the engine's ports.

Each call opens its own ``AsyncSession`` (unit-of-work) from the injected
factory and commits before returning.  Ride saves are a compare-and-set on
``rides.version`` so two engine processes sharing one database cannot both
move the same ride; the per-ride lock only covers a single process.  ORM
rows never leave this module: callers only see domain dataclasses.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import DriverModel, RideModel, RideSettlementModel, UserModel
from src.domain.entities import (
    DriverProfile,
    Location,
    Ride,
    Settlement,
    UserProfile,
)
from src.domain.enums import RideStatus
from src.domain.exceptions import ConcurrentUpdate
from src.domain.ports import ProfileDirectory, RewardsLedger, RideStore


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_ride(row: RideModel) -> Ride:
    return Ride(
        id=row.id,
        rider_id=row.rider_id,
        driver_id=row.driver_id,
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_name),
        destination=Location(
            row.destination_lat, row.destination_lng, row.destination_name
        ),
        fare=row.fare,
        vehicle_type=row.vehicle_type,
        payment_method=row.payment_method,
        split_fare=row.split_fare,
        split_with=tuple(row.split_with or ()),
        status=row.status,
        rider_completed_ride=row.rider_completed_ride,
        driver_completed_ride=row.driver_completed_ride,
        rating=row.rating,
        points_earned=row.points_earned,
        driver_bonus=row.driver_bonus,
        created_at=_aware(row.created_at),
        completed_at=_aware(row.completed_at),
        settled=row.settled,
        version=row.version,
    )


def _columns(ride: Ride) -> dict[str, Any]:
    return {
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "pickup_lat": ride.pickup.latitude,
        "pickup_lng": ride.pickup.longitude,
        "pickup_name": ride.pickup.name,
        "destination_lat": ride.destination.latitude,
        "destination_lng": ride.destination.longitude,
        "destination_name": ride.destination.name,
        "fare": ride.fare,
        "vehicle_type": ride.vehicle_type,
        "payment_method": ride.payment_method,
        "split_fare": ride.split_fare,
        "split_with": list(ride.split_with),
        "status": ride.status,
        "rider_completed_ride": ride.rider_completed_ride,
        "driver_completed_ride": ride.driver_completed_ride,
        "rating": ride.rating,
        "points_earned": ride.points_earned,
        "driver_bonus": ride.driver_bonus,
        "created_at": ride.created_at,
        "completed_at": ride.completed_at,
        "settled": ride.settled,
    }


class SqlRideStore(RideStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, ride: Ride) -> Ride:
        async with self.session_factory() as session:
            row = RideModel(**_columns(ride), version=0)
            session.add(row)
            await session.flush()
            stored = _to_ride(row)
            await session.commit()
        return stored

    async def get(self, ride_id: int) -> Optional[Ride]:
        async with self.session_factory() as session:
            row = await session.get(RideModel, ride_id)
            return _to_ride(row) if row else None

    async def save(self, ride: Ride) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(RideModel)
                .where(RideModel.id == ride.id, RideModel.version == ride.version)
                .values(**_columns(ride), version=ride.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                found = await session.scalar(
                    select(RideModel.version).where(RideModel.id == ride.id)
                )
                if found is None:
                    raise KeyError(f"Ride {ride.id} was never added")
                raise ConcurrentUpdate(
                    f"Ride {ride.id} changed since it was read "
                    f"(version {ride.version}, stored {found})"
                )
            await session.commit()
        ride.version += 1

    async def list_by_status(self, status: RideStatus) -> list[Ride]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RideModel)
                .where(RideModel.status == status)
                .order_by(RideModel.created_at, RideModel.id)
            )
            return [_to_ride(row) for row in result.scalars().all()]

    async def list_for_rider(self, rider_id: int, limit: int = 10) -> list[Ride]:
        return await self._newest(RideModel.rider_id == rider_id, limit)

    async def list_for_driver(self, driver_id: int, limit: int = 10) -> list[Ride]:
        return await self._newest(RideModel.driver_id == driver_id, limit)

    async def _newest(self, clause, limit: int) -> list[Ride]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RideModel)
                .where(clause)
                .order_by(RideModel.created_at.desc(), RideModel.id.desc())
                .limit(limit)
            )
            return [_to_ride(row) for row in result.scalars().all()]


class SqlAccounts(ProfileDirectory, RewardsLedger):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        points_per_level: int = 1000,
    ):
        self.session_factory = session_factory
        self.points_per_level = points_per_level

    # ── ProfileDirectory ──────────────────────────────────────────

    async def get_user(self, user_id: int) -> Optional[UserProfile]:
        async with self.session_factory() as session:
            row = await session.get(UserModel, user_id)
            return _to_user(row) if row else None

    async def get_driver(self, driver_id: int) -> Optional[DriverProfile]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DriverModel, UserModel)
                .join(UserModel, DriverModel.user_id == UserModel.id)
                .where(DriverModel.id == driver_id)
            )
            row = result.first()
            return _to_driver(*row) if row else None

    async def list_active_drivers(self) -> list[DriverProfile]:
        return await self.list_drivers(is_active=True)

    async def list_drivers(
        self, is_active: Optional[bool] = None
    ) -> list[DriverProfile]:
        query = select(DriverModel, UserModel).join(
            UserModel, DriverModel.user_id == UserModel.id
        )
        if is_active is not None:
            query = query.where(DriverModel.is_active.is_(is_active))
        async with self.session_factory() as session:
            result = await session.execute(
                query.order_by(UserModel.rating.desc(), DriverModel.id)
            )
            return [_to_driver(d, u) for d, u in result.all()]

    # ── RewardsLedger ─────────────────────────────────────────────

    async def award_points(self, user_id: int, amount: int) -> None:
        async with self.session_factory() as session:
            user = await self._lock_user(session, user_id)
            self._add_points(user, amount)
            await session.commit()

    async def apply_rating(self, driver_id: int, rating: int) -> None:
        async with self.session_factory() as session:
            driver = await self._require_driver(session, driver_id)
            user = await self._lock_user(session, driver.user_id)
            _fold_rating(user, rating)
            await session.commit()

    async def increment_rides(self, user_id: int) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(total_rides=UserModel.total_rides + 1)
            )
            if result.rowcount == 0:
                raise KeyError(f"User {user_id} not found")
            await session.commit()

    async def settle_ride(self, settlement: Settlement) -> bool:
        """Apply points, counters and rating in one transaction.

        The ``ride_settlements`` row is written in the same transaction, so
        a second settlement of the same ride (here or from another process)
        finds it, or trips its primary key, and applies nothing.
        """
        async with self.session_factory() as session:
            if await session.get(RideSettlementModel, settlement.ride_id):
                return False
            session.add(RideSettlementModel(ride_id=settlement.ride_id))

            rider = await self._lock_user(session, settlement.rider_id)
            self._add_points(rider, settlement.points)
            rider.total_rides += 1

            if settlement.driver_id is not None:
                driver = await self._require_driver(session, settlement.driver_id)
                user = await self._lock_user(session, driver.user_id)
                user.total_rides += 1
                if settlement.rating is not None:
                    _fold_rating(user, settlement.rating)

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    # ── Internals ─────────────────────────────────────────────────

    def _add_points(self, user: UserModel, amount: int) -> None:
        user.points += amount
        user.level = max(user.level, user.points // self.points_per_level + 1)

    @staticmethod
    async def _lock_user(session: AsyncSession, user_id: int) -> UserModel:
        result = await session.execute(
            select(UserModel).where(UserModel.id == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise KeyError(f"User {user_id} not found")
        return user

    @staticmethod
    async def _require_driver(session: AsyncSession, driver_id: int) -> DriverModel:
        driver = await session.get(DriverModel, driver_id)
        if driver is None:
            raise KeyError(f"Driver {driver_id} not found")
        return driver


def _fold_rating(user: UserModel, rating: int) -> None:
    # Running average over the ride count, which already includes this ride.
    n = user.total_rides or 1
    user.rating = round((user.rating * (n - 1) + rating) / n, 2)


def _to_user(row: UserModel) -> UserProfile:
    return UserProfile(
        id=row.id,
        name=row.name,
        rating=row.rating,
        total_rides=row.total_rides,
        points=row.points,
        level=row.level,
    )


def _to_driver(driver: DriverModel, user: UserModel) -> DriverProfile:
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
