"""
Redis-based distributed lock.

Background sweeps (expiry, auto-completion, outbox dispatch) take one lock
each so that when several API processes run the same schedule, only one
of them executes a given cycle.  Booking consistency does not depend on
this lock -- it comes from the row lock + version check in the database.

SET NX EX to acquire; a Lua script for atomic check-and-delete on release
so an expired holder can never free someone else's lock.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

from carpool.config import settings

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Raised by the context manager when another holder owns the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"{settings.lock_prefix}:lock:{name}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Release only if we still own the lock.  True if it was ours."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
