"""
Tests for the SQL repositories against SQLite (aiosqlite), plus one full
lifecycle run on the SQL backend.
"""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from src.domain.entities import Location, Ride, Settlement
from src.domain.enums import PaymentMethod, RideStatus, VehicleType
from src.domain.exceptions import AlreadyMatched, ConcurrentUpdate
from src.domain.lifecycle import RideEngine
from src.infrastructure.database import Base, create_engine, create_session_factory
from src.infrastructure.locks import KeyedLock
from src.infrastructure.models import DriverModel, RideModel, UserModel
from src.infrastructure.publishers import InMemoryEventBus
from src.infrastructure.repositories import SqlAccounts, SqlRideStore, _columns

PICKUP = Location(19.0896, 72.8656, "Airport Terminal 2")
DESTINATION = Location(19.1176, 72.8490, "Andheri West")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = create_session_factory(engine)
    async with factory() as session:
        session.add_all(
            [
                UserModel(name="John Doe", email="john@example.com", rating=4.9),
                UserModel(name="Amy L.", email="amy@example.com", rating=4.4),
                UserModel(
                    name="Michael T.",
                    email="michael@example.com",
                    rating=4.0,
                    total_rides=3,
                ),
                UserModel(name="Priya K.", email="priya@example.com", rating=4.7),
            ]
        )
        await session.flush()
        session.add_all(
            [
                DriverModel(user_id=3, vehicle="Toyota Camry", license_plate="ABC-1234"),
                DriverModel(
                    user_id=4,
                    vehicle="Honda City",
                    license_plate="MH-02-7781",
                    is_active=False,
                ),
            ]
        )
        await session.commit()

    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlRideStore(session_factory)


@pytest.fixture
def accounts(session_factory):
    return SqlAccounts(session_factory)


class TestSqlRideStore:
    @pytest.mark.asyncio
    async def test_add_and_get(self, store):
        added = await store.add(
            Ride(
                rider_id=1,
                pickup=PICKUP,
                destination=DESTINATION,
                fare=42.5,
                vehicle_type=VehicleType.PINKBIKE,
                payment_method=PaymentMethod.UPI,
                split_fare=True,
                split_with=("amy@example.com",),
            )
        )
        assert added.id is not None

        loaded = await store.get(added.id)
        assert loaded.pickup == PICKUP
        assert loaded.destination.name == "Andheri West"
        assert loaded.vehicle_type is VehicleType.PINKBIKE
        assert loaded.payment_method is PaymentMethod.UPI
        assert loaded.split_with == ("amy@example.com",)
        assert loaded.status is RideStatus.REQUESTED
        assert loaded.created_at == added.created_at
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get(404) is None

    @pytest.mark.asyncio
    async def test_save_persists_transition(self, store):
        ride = await store.add(Ride(rider_id=1, fare=20.0))
        ride.assign_driver(1)
        ride.confirm_by_rider(rating=4)
        await store.save(ride)

        loaded = await store.get(ride.id)
        assert loaded.status is RideStatus.ACCEPTED
        assert loaded.driver_id == 1
        assert loaded.rider_completed_ride
        assert loaded.rating == 4

    @pytest.mark.asyncio
    async def test_save_unknown_ride(self, store):
        with pytest.raises(KeyError):
            await store.save(Ride(id=77, rider_id=1))

    @pytest.mark.asyncio
    async def test_listings(self, store):
        first = await store.add(Ride(rider_id=1))
        second = await store.add(Ride(rider_id=1))
        other = await store.add(Ride(rider_id=2))
        second.assign_driver(1)
        await store.save(second)

        requested = await store.list_by_status(RideStatus.REQUESTED)
        assert [r.id for r in requested] == [first.id, other.id]
        assert [r.id for r in await store.list_for_rider(1)] == [second.id, first.id]
        assert [r.id for r in await store.list_for_rider(1, limit=1)] == [second.id]
        assert [r.id for r in await store.list_for_driver(1)] == [second.id]


class TestSqlAccounts:
    @pytest.mark.asyncio
    async def test_profiles(self, accounts):
        user = await accounts.get_user(1)
        assert (user.name, user.rating, user.level) == ("John Doe", 4.9, 1)
        assert await accounts.get_user(99) is None

        driver = await accounts.get_driver(1)
        assert driver.user_id == 3
        assert driver.name == "Michael T."
        assert driver.license_plate == "ABC-1234"
        assert await accounts.get_driver(99) is None

    @pytest.mark.asyncio
    async def test_only_online_drivers_listed(self, accounts):
        drivers = await accounts.list_active_drivers()
        assert [d.id for d in drivers] == [1]

    @pytest.mark.asyncio
    async def test_award_points_raises_level(self, accounts):
        await accounts.award_points(1, 600)
        await accounts.award_points(1, 600)
        user = await accounts.get_user(1)
        assert user.points == 1200
        assert user.level == 2

    @pytest.mark.asyncio
    async def test_rating_uses_running_average(self, accounts):
        await accounts.increment_rides(3)
        await accounts.apply_rating(1, 5)
        driver = await accounts.get_driver(1)
        assert driver.total_rides == 4
        assert driver.rating == 4.25

    @pytest.mark.asyncio
    async def test_missing_user(self, accounts):
        with pytest.raises(KeyError):
            await accounts.increment_rides(99)
        with pytest.raises(KeyError):
            await accounts.apply_rating(99, 5)


class TestSqlLifecycle:
    @pytest.mark.asyncio
    async def test_request_to_completion(self, store, accounts):
        engine = RideEngine(store, accounts, accounts, InMemoryEventBus(), KeyedLock())

        ride = await engine.request_ride(1, PICKUP, DESTINATION, fare=20.0)
        await engine.accept_ride(1, ride.id)
        await engine.confirm_completion_by_driver(ride.id)
        await engine.confirm_completion_by_rider(ride.id, rating=5)

        done = await engine.get_ride(ride.id)
        assert done.status is RideStatus.COMPLETED
        assert done.points_earned == 33
        assert done.driver_bonus == 2.0
        rider = await accounts.get_user(1)
        assert (rider.points, rider.total_rides) == (33, 1)
        assert (await accounts.get_driver(1)).rating == 4.25

    @pytest.mark.asyncio
    async def test_restore_rebuilds_queue_in_priority_order(self, store, accounts):
        low = await store.add(Ride(rider_id=2, fare=10.0))
        high = await store.add(Ride(rider_id=1, fare=10.0))
        engine = RideEngine(store, accounts, accounts, InMemoryEventBus(), KeyedLock())

        assert await engine.restore() == 2
        assert [e.ride_id for e in engine.list_pending_rides()] == [high.id, low.id]


class TestSqlVersioning:
    @pytest.mark.asyncio
    async def test_stale_save_is_rejected(self, store):
        ride = await store.add(Ride(rider_id=1, fare=20.0))
        stale = await store.get(ride.id)
        ride.assign_driver(1)
        await store.save(ride)
        assert ride.version == 1

        stale.cancel()
        with pytest.raises(ConcurrentUpdate):
            await store.save(stale)
        loaded = await store.get(ride.id)
        assert (loaded.status, loaded.version) == (RideStatus.ACCEPTED, 1)

    @pytest.mark.asyncio
    async def test_two_engines_on_one_database(self, store, accounts):
        first = RideEngine(store, accounts, accounts, InMemoryEventBus(), KeyedLock())
        second = RideEngine(store, accounts, accounts, InMemoryEventBus(), KeyedLock())
        ride = await first.request_ride(1, PICKUP, DESTINATION, fare=20.0)
        assert await second.restore() == 1

        results = await asyncio.gather(
            first.accept_ride(1, ride.id),
            second.accept_ride(1, ride.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Ride) for r in results) == 1
        assert sum(isinstance(r, AlreadyMatched) for r in results) == 1
        loaded = await store.get(ride.id)
        assert (loaded.status, loaded.version) == (RideStatus.ACCEPTED, 1)

    @pytest.mark.asyncio
    async def test_check_constraints(self, session_factory):
        row = RideModel(**_columns(Ride(rider_id=1)), version=0)
        row.fare = -1.0
        async with session_factory() as session:
            session.add(row)
            with pytest.raises(IntegrityError):
                await session.commit()

        row = RideModel(**_columns(Ride(rider_id=1)), version=0)
        row.rating = 6
        async with session_factory() as session:
            session.add(row)
            with pytest.raises(IntegrityError):
                await session.commit()


class TestSqlSettlement:
    @pytest.mark.asyncio
    async def test_settle_is_applied_once(self, store, accounts):
        ride = await store.add(Ride(rider_id=1, fare=20.0))
        settlement = Settlement(
            ride_id=ride.id, rider_id=1, driver_id=1, points=33, rating=5
        )

        assert await accounts.settle_ride(settlement) is True
        assert await accounts.settle_ride(settlement) is False

        rider = await accounts.get_user(1)
        assert (rider.points, rider.total_rides) == (33, 1)
        driver = await accounts.get_driver(1)
        assert (driver.total_rides, driver.rating) == (4, 4.25)

    @pytest.mark.asyncio
    async def test_missing_driver_rolls_back(self, store, accounts):
        ride = await store.add(Ride(rider_id=1, fare=20.0))

        with pytest.raises(KeyError):
            await accounts.settle_ride(
                Settlement(ride_id=ride.id, rider_id=1, driver_id=99, points=33)
            )

        assert (await accounts.get_user(1)).points == 0
        assert await accounts.settle_ride(
            Settlement(ride_id=ride.id, rider_id=1, driver_id=1, points=33)
        )

    @pytest.mark.asyncio
    async def test_list_drivers_by_flag(self, accounts):
        assert [d.id for d in await accounts.list_drivers()] == [2, 1]
        assert [d.id for d in await accounts.list_drivers(is_active=True)] == [1]
        assert [d.id for d in await accounts.list_drivers(is_active=False)] == [2]
