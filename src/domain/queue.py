"""
Pending Request Queue
=====================

Holds every REQUESTED ride that has no driver yet, ordered for matching.

Priority
--------
1. Rider rating, **descending** -- higher-rated riders are matched first.
2. ``created_at``, ascending -- first come, first served among equals.
3. Insertion sequence -- keeps FIFO stable when timestamps collide.

Concurrency
-----------
Many drivers contend for the same top entries, so removal goes through
``claim`` / ``claim_best``: an atomic compare-and-remove under one lock.
A caller that gets ``None`` back lost the race.

Complexity
----------
* enqueue / claim / remove:  O(1) amortised (dict) + O(log N) heap push
* peek_best:                 O(log N) amortised (stale heap tops popped)
* list_all:                  O(N log N) -- sorted snapshot

Stale heap items are rebuilt away once the heap holds more than twice as
many items as the queue has entries.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from typing import Collection, Iterator, Optional

from .entities import PendingRequest, Ride, RiderSnapshot


def _priority_key(entry: PendingRequest, seq: int) -> tuple:
    return (-entry.rider_rating, entry.created_at, seq)


class PendingRequestQueue:
    def __init__(self, priority_threshold: float = 4.8):
        self.priority_threshold = priority_threshold
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[tuple, PendingRequest]] = {}
        self._heap: list[tuple[tuple, int]] = []
        self._seq = itertools.count()

    # ── Mutations ─────────────────────────────────────────────────

    def enqueue(self, ride: Ride, snapshot: RiderSnapshot) -> PendingRequest:
        if ride.id is None:
            raise ValueError("Ride must be stored before it is queued")
        entry = PendingRequest(
            ride_id=ride.id,
            rider_id=ride.rider_id,
            rider_name=snapshot.name,
            rider_rating=snapshot.rating,
            total_rides=snapshot.total_rides,
            pickup=ride.pickup,
            destination=ride.destination,
            fare=ride.fare,
            vehicle_type=ride.vehicle_type,
            payment_method=ride.payment_method,
            created_at=ride.created_at,
            is_priority=snapshot.rating >= self.priority_threshold,
        )
        self._push(entry)
        return entry

    def restore(self, entry: PendingRequest) -> None:
        """Put a previously claimed entry back (e.g. the match failed)."""
        self._push(entry)

    def _push(self, entry: PendingRequest) -> None:
        with self._lock:
            key = _priority_key(entry, next(self._seq))
            self._entries[entry.ride_id] = (key, entry)
            heapq.heappush(self._heap, (key, entry.ride_id))
            self._compact_locked()

    def claim(self, ride_id: int) -> Optional[PendingRequest]:
        """Atomically remove and return *ride_id*, or ``None`` if absent."""
        with self._lock:
            item = self._entries.pop(ride_id, None)
            self._compact_locked()
        return item[1] if item else None

    def claim_best(
        self, exclude: Collection[int] = ()
    ) -> Optional[PendingRequest]:
        """Atomically remove and return the best entry not in *exclude*."""
        with self._lock:
            entry = self._best_locked(exclude)
            if entry is not None:
                del self._entries[entry.ride_id]
                self._compact_locked()
            return entry

    def remove(self, ride_id: int) -> None:
        """Drop *ride_id*; removing an absent id is a no-op."""
        with self._lock:
            self._entries.pop(ride_id, None)
            self._compact_locked()

    # ── Reads ─────────────────────────────────────────────────────

    def peek_best(
        self, exclude: Collection[int] = ()
    ) -> Optional[PendingRequest]:
        """Highest-priority entry, leaving the queue untouched."""
        with self._lock:
            return self._best_locked(exclude)

    def list_all(self) -> tuple[PendingRequest, ...]:
        """Point-in-time snapshot in priority order."""
        with self._lock:
            items = sorted(self._entries.values(), key=lambda item: item[0])
        return tuple(entry for _, entry in items)

    def __contains__(self, ride_id: object) -> bool:
        with self._lock:
            return ride_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[PendingRequest]:
        return iter(self.list_all())

    # ── Internals ─────────────────────────────────────────────────

    def _compact_locked(self) -> None:
        # Claims, removals and re-queues leave stale items behind.
        if len(self._heap) > 2 * len(self._entries):
            self._heap = [
                (key, ride_id) for ride_id, (key, _) in self._entries.items()
            ]
            heapq.heapify(self._heap)

    def _is_live(self, key: tuple, ride_id: int) -> bool:
        item = self._entries.get(ride_id)
        return item is not None and item[0] == key

    def _best_locked(
        self, exclude: Collection[int]
    ) -> Optional[PendingRequest]:
        # Drop heap tops that were claimed, removed or re-queued.
        while self._heap and not self._is_live(*self._heap[0]):
            heapq.heappop(self._heap)
        if not self._heap:
            return None

        key, ride_id = self._heap[0]
        if ride_id not in exclude:
            return self._entries[ride_id][1]

        for key, ride_id in sorted(self._heap):
            if ride_id not in exclude and self._is_live(key, ride_id):
                return self._entries[ride_id][1]
        return None
