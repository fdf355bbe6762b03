"""
Locks.

* ``KeyedLock`` -- per-key asyncio lock.  Used by the lifecycle engine to
  serialise mutations of one ride while letting different rides proceed in
  parallel.  Each key gets its own ``asyncio.Lock``; the entry is dropped
  once nobody holds or waits on it, so the table only grows with the number
  of rides being touched *right now*.
* ``DistributedLock`` -- Redis lock held around one auto-dispatch cycle so
  that only one engine process dispatches at a time.  SET NX EX to acquire,
  a Lua check-and-delete to release.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

import redis.asyncio as aioredis


class KeyedLock:
    def __init__(self, namespace: str = "ride"):
        self.namespace = namespace
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(self, client: aioredis.Redis, key: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try once; ``True`` if this instance now owns the key."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Delete the key only if we still own it (it may have expired)."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
