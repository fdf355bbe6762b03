"""
Shared test fixtures.

The engine runs on the in-memory backends so tests need no PostgreSQL or
Redis.  ``YieldingRideStore`` yields to the event loop on every call, which
lets ``asyncio.gather`` genuinely interleave concurrent operations and
exercise the per-ride locks.
"""

import asyncio
from types import SimpleNamespace

import pytest

from src.domain.entities import Location
from src.domain.lifecycle import RideEngine
from src.domain.queue import PendingRequestQueue
from src.domain.rewards import FareRatingPoints, PriorityRiderBonus, RewardsEngine
from src.infrastructure.locks import KeyedLock
from src.infrastructure.memory import InMemoryAccounts, InMemoryRideStore
from src.infrastructure.publishers import InMemoryEventBus

PICKUP = Location(19.0896, 72.8656, "Airport Terminal 2")
DESTINATION = Location(19.1176, 72.8490, "Andheri West")


class YieldingRideStore(InMemoryRideStore):
    async def get(self, ride_id):
        await asyncio.sleep(0)
        return await super().get(ride_id)

    async def save(self, ride):
        await asyncio.sleep(0)
        await super().save(ride)


@pytest.fixture
def accounts() -> InMemoryAccounts:
    return InMemoryAccounts()


@pytest.fixture
def people(accounts: InMemoryAccounts) -> SimpleNamespace:
    """Three riders, two online drivers and one offline driver."""
    alice = accounts.add_user("Alice", rating=4.9)
    bob = accounts.add_user("Bob", rating=4.5)
    carol = accounts.add_user("Carol", rating=4.9)
    dave = accounts.add_user("Dave", rating=4.8)
    erin = accounts.add_user("Erin", rating=4.6)
    frank = accounts.add_user("Frank", rating=5.0)
    return SimpleNamespace(
        alice=alice.id,
        bob=bob.id,
        carol=carol.id,
        driver=accounts.add_driver(dave.id, "Toyota Camry", "ABC-1234").id,
        other_driver=accounts.add_driver(erin.id, "Honda City", "MH-02-7781").id,
        offline_driver=accounts.add_driver(
            frank.id, "Maruti Swift", "KA-01-0001", is_active=False
        ).id,
    )


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def store() -> YieldingRideStore:
    return YieldingRideStore()


@pytest.fixture
def engine(store, accounts, bus, people) -> RideEngine:
    return RideEngine(
        store,
        accounts,
        accounts,
        bus,
        KeyedLock(),
        queue=PendingRequestQueue(priority_threshold=4.8),
        rewards=RewardsEngine(FareRatingPoints(), PriorityRiderBonus(4.8, 0.10)),
    )


async def new_ride(engine: RideEngine, rider_id: int, fare: float = 20.0):
    return await engine.request_ride(
        rider_id, PICKUP, DESTINATION, fare=fare
    )


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events
