"""Per-chat mutual exclusion on Redis.

Acquire is `SET key token NX PX ttl`; release and extend only act when the
stored token is still ours.
"""

import asyncio
import time
from uuid import uuid4

LOCK_PREFIX = "lock:"

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


def chat_lock_key(chat_id) -> str:
    return f"chat:{chat_id}"


class DistributedLock:
    def __init__(self, redis_client, ttl_ms: int = 120000):
        self.redis = redis_client
        self.ttl_ms = ttl_ms

    async def acquire(self, key: str, ttl_ms: int | None = None) -> str | None:
        """Return a holder token, or None when someone else holds a live lease."""
        token = uuid4().hex
        was_set = await self.redis.set(f"{LOCK_PREFIX}{key}", token, px=ttl_ms or self.ttl_ms, nx=True)
        return token if was_set else None

    async def acquire_with_wait(
        self,
        key: str,
        *,
        wait_seconds: float,
        retry_interval_seconds: float = 0.25,
        ttl_ms: int | None = None,
        sleep_func=asyncio.sleep,
        clock=time.monotonic,
    ) -> str | None:
        deadline = clock() + max(wait_seconds, 0.0)
        while True:
            token = await self.acquire(key, ttl_ms)
            if token:
                return token
            if clock() >= deadline:
                return None
            await sleep_func(retry_interval_seconds)

    async def release(self, key: str, token: str) -> bool:
        result = await self.redis.eval(RELEASE_SCRIPT, 1, f"{LOCK_PREFIX}{key}", token)
        return bool(result)

    async def extend(self, key: str, token: str, ttl_ms: int | None = None) -> bool:
        result = await self.redis.eval(EXTEND_SCRIPT, 1, f"{LOCK_PREFIX}{key}", token, ttl_ms or self.ttl_ms)
        return bool(result)

    async def is_locked(self, key: str) -> bool:
        return await self.redis.get(f"{LOCK_PREFIX}{key}") is not None
