"""
Background Auto-Dispatch Worker
===============================

Optional (``AUTO_DISPATCH_ENABLED``).  Runs every
``AUTO_DISPATCH_INTERVAL_SECONDS`` (default 5 s).  Drivers normally poll
the pending list and accept rides themselves; this loop instead pushes
the best pending ride to each idle online driver.

Algorithm per cycle
-------------------
1. Fetch online drivers, highest rated first.
2. Drop drivers that already carry an ACCEPTED or IN_PROGRESS ride.
3. For each remaining driver, ``dispatch_next`` claims the best pending
   request that driver has not rejected (rider rating desc, FIFO).
4. Stop early once the pending queue is empty.

Concurrency safety
------------------
Dispatch goes through the same atomic queue claim and per-ride lock as
manual ``accept_ride`` calls, so the worker and drivers can race freely.
When several engine processes share one store, a ``DistributedLock``
factory makes each cycle run in at most one of them; a process that
cannot take the lock skips the cycle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from src.domain.enums import RideStatus
from src.domain.exceptions import RideError
from src.domain.lifecycle import RideEngine
from src.infrastructure.locks import DistributedLock

LockFactory = Callable[[], DistributedLock]

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop(
    engine: RideEngine,
    interval_seconds: int,
    lock_factory: Optional[LockFactory] = None,
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(engine, interval_seconds, lock_factory))
    logger.info("Dispatch worker started (interval=%ds)", interval_seconds)


async def stop_dispatch_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = _stop_event = None
    logger.info("Dispatch worker stopped")


async def run_dispatch_cycle(
    engine: RideEngine, lock: Optional[DistributedLock] = None
) -> int:
    """Execute one dispatch cycle.  Returns the number of rides matched."""
    if not len(engine.queue):
        return 0

    if lock is None:
        return await _dispatch(engine)
    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0
    try:
        return await _dispatch(engine)
    finally:
        await lock.release()


# ── Internals ─────────────────────────────────────────────────────────


async def _dispatch(engine: RideEngine) -> int:
    busy: set[int] = set()
    for status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS):
        for ride in await engine.store.list_by_status(status):
            if ride.driver_id is not None:
                busy.add(ride.driver_id)

    matched = 0
    for driver in await engine.directory.list_active_drivers():
        if not len(engine.queue):
            break
        if driver.id in busy:
            continue
        try:
            ride = await engine.dispatch_next(driver.id)
        except RideError as exc:
            logger.warning("Dispatch to driver %s failed: %s", driver.id, exc)
            continue
        if ride is not None:
            matched += 1
            busy.add(driver.id)

    if matched:
        logger.info("Dispatch cycle: %d rides matched", matched)
    return matched


async def _loop(
    engine: RideEngine,
    interval_seconds: int,
    lock_factory: Optional[LockFactory],
) -> None:
    """Periodic loop: run a dispatch cycle then sleep."""
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            lock = lock_factory() if lock_factory else None
            await run_dispatch_cycle(engine, lock)
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass  # next cycle
