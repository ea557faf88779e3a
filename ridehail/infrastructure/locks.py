"""
Redis lease for the offer sweep.

Only one API process may expire stale ``requested`` rides per interval.  The
lease is ``SET lock:<name> <token> NX EX ttl``; renewal and release are Lua
scripts that act only while the stored token is still ours, so a process
whose lease lapsed can neither extend nor delete the next holder's lease.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_RENEW = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.owned = False

    async def acquire(self) -> bool:
        """Try once, without blocking."""
        self.owned = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.owned

    async def extend(self) -> bool:
        """Reset the lease to a full ``ttl``.  False once it was lost."""
        if not self.owned:
            return False
        renewed = await self.redis.eval(_RENEW, 1, self.key, self.token, self.ttl)
        self.owned = bool(renewed)
        return self.owned

    async def release(self) -> bool:
        if not self.owned:
            return False
        self.owned = False
        return bool(await self.redis.eval(_RELEASE, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
