"""Engine wiring and FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import Request

from src.config import Settings
from src.domain.lifecycle import RideEngine
from src.domain.queue import PendingRequestQueue
from src.domain.rewards import FareRatingPoints, PriorityRiderBonus, RewardsEngine
from src.infrastructure.locks import KeyedLock
from src.workers.matcher import LockFactory

Cleanup = Callable[[], Awaitable[None]]


def build_ride_engine(config: Settings) -> tuple[RideEngine, list[Cleanup]]:
    """Assemble the engine for the configured backends.

    Returns the engine plus the shutdown hooks for whatever it opened.
    """
    cleanups: list[Cleanup] = []

    if config.storage_backend == "sql":
        from src.infrastructure.database import create_engine, create_session_factory
        from src.infrastructure.repositories import SqlAccounts, SqlRideStore

        db_engine = create_engine(config.database_url)
        factory = create_session_factory(db_engine)
        store = SqlRideStore(factory)
        accounts = SqlAccounts(factory, points_per_level=config.points_per_level)
        cleanups.append(db_engine.dispose)
    else:
        from src.infrastructure.demo_data import populate_memory
        from src.infrastructure.memory import InMemoryAccounts, InMemoryRideStore

        store = InMemoryRideStore()
        accounts = InMemoryAccounts(points_per_level=config.points_per_level)
        if config.seed_demo_data:
            populate_memory(accounts)

    if config.event_backend == "redis":
        from src.infrastructure.publishers import RedisEventPublisher
        from src.infrastructure.redis_client import close_redis, get_redis

        events = RedisEventPublisher(get_redis(config.redis_url))
        cleanups.append(close_redis)
    else:
        from src.infrastructure.publishers import InMemoryEventBus

        events = InMemoryEventBus()

    rewards = RewardsEngine(
        FareRatingPoints(config.points_per_fare_unit, config.rating_divisor),
        PriorityRiderBonus(config.priority_rider_threshold, config.priority_bonus_rate),
    )
    engine = RideEngine(
        store,
        accounts,
        accounts,
        events,
        KeyedLock(),
        queue=PendingRequestQueue(config.priority_rider_threshold),
        rewards=rewards,
        require_active_driver=config.require_active_driver,
    )
    return engine, cleanups


def get_engine(request: Request) -> RideEngine:
    """The process-wide engine created by ``create_app``."""
    return request.app.state.ride_engine


def build_dispatch_lock_factory(
    config: Settings,
) -> tuple[Optional[LockFactory], list[Cleanup]]:
    """A fresh Redis lock per dispatch cycle, when the lock is enabled."""
    if not config.dispatch_lock_enabled:
        return None, []

    from src.infrastructure.locks import DistributedLock
    from src.infrastructure.redis_client import close_redis, get_redis

    client = get_redis(config.redis_url)

    def factory() -> DistributedLock:
        return DistributedLock(
            client, "dispatch-cycle", ttl_seconds=config.dispatch_lock_ttl_seconds
        )

    return factory, [close_redis]
