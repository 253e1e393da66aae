"""
Per-ride locks.

Every ride is its own lockable unit: transitions on ride A never wait for
ride B, and there is no global lock.

* ``LocalRideLocks``  -- one ``asyncio.Lock`` per ride id, for a single
  API process.  Entries vanish once no coroutine holds a reference.
* ``RedisRideLocks``  -- a ``DistributedLock`` per ride id, for several
  API processes sharing one database.
* ``DistributedLock`` -- SET NX EX for acquire and a Lua script for atomic
  check-and-delete on release.  Also guards the outbox dispatcher so only
  one instance runs a dispatch cycle at a time.

The ride row's optimistic ``version`` column stays the last line of
defence: a write that slipped past an expired lock is rejected and
re-validated.
"""

from __future__ import annotations

import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis

from ride_lifecycle.domain.errors import InvalidTransition


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(self, timeout: float, poll: float = 0.05) -> bool:
        """Retry ``acquire`` until it succeeds or *timeout* elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(poll)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise RuntimeError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class LocalRideLocks:
    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, ride_id: str) -> asyncio.Lock:
        lock = self._locks.get(ride_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ride_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, ride_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(ride_id)
        async with lock:
            yield


class RedisRideLocks:
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 10,
        wait_seconds: float = 5.0,
    ):
        self.redis = client
        self.ttl = ttl_seconds
        self.wait = wait_seconds

    @asynccontextmanager
    async def hold(self, ride_id: str) -> AsyncIterator[None]:
        lock = DistributedLock(self.redis, f"ride:{ride_id}", ttl_seconds=self.ttl)
        if not await lock.acquire_within(self.wait):
            raise InvalidTransition(f"Ride {ride_id} is busy, retry the command")
        try:
            yield
        finally:
            await lock.release()
