"""
Event publishers.

* ``InMemoryEventBus`` -- subscribers receive events on an
  ``asyncio.Queue``, either for one ride or for every ride.  Used in tests
  and single-process deployments.
* ``RedisEventPublisher`` -- publishes the JSON event on the shared
  ``ride-updates`` channel and the per-ride ``ride-updates:{id}`` channel,
  for push or long-poll gateways running in other processes.

Delivery is the gateway's concern; a subscriber that falls behind drops
its oldest events instead of blocking the engine.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Optional

import redis.asyncio as aioredis

from src.domain.events import CHANNEL_RIDE_UPDATES, RideEvent, ride_channel
from src.domain.ports import EventPublisher

logger = logging.getLogger(__name__)

ALL_RIDES = None


class InMemoryEventBus(EventPublisher):
    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[Optional[int], list[asyncio.Queue]] = defaultdict(
            list
        )

    def subscribe(self, ride_id: Optional[int] = ALL_RIDES) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[ride_id].append(queue)
        return queue

    def unsubscribe(
        self, queue: asyncio.Queue, ride_id: Optional[int] = ALL_RIDES
    ) -> None:
        queues = self._subscribers.get(ride_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(ride_id, None)

    async def publish(self, ride_id: int, event: RideEvent) -> None:
        targets = self._subscribers.get(ride_id, []) + self._subscribers.get(
            ALL_RIDES, []
        )
        for queue in targets:
            if queue.full():
                queue.get_nowait()
                logger.warning("Subscriber queue full; dropped oldest event")
            queue.put_nowait(event)

    def subscriber_count(self, ride_id: Optional[int] = ALL_RIDES) -> int:
        return len(self._subscribers.get(ride_id, []))


class RedisEventPublisher(EventPublisher):
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, ride_id: int, event: RideEvent) -> None:
        payload = event.model_dump_json()
        await self.redis.publish(CHANNEL_RIDE_UPDATES, payload)
        await self.redis.publish(ride_channel(ride_id), payload)
