"""Fixed-window counters in Redis (INCR + EXPIRE on first hit)."""

import re
from dataclasses import dataclass

RATE_PREFIX = "rate:"

# Give back unused budget, but never recreate a counter whose window already ended.
REFUND_SCRIPT = """
if redis.call("exists", KEYS[1]) == 1 then
    return redis.call("decrby", KEYS[1], ARGV[1])
end
return 0
"""


@dataclass
class RateLimitInfo:
    allowed: bool
    count: int
    limit: int
    reset_in: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    @property
    def just_exceeded(self) -> bool:
        """First over-limit hit in the current window."""
        return self.count == self.limit + 1


def phone_key(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    return f"phone:{digits}"


def salon_key(salon_id) -> str:
    return f"salon:{salon_id}"


class RateLimiter:
    def __init__(self, redis_client):
        self.redis = redis_client

    async def _ensure_expiry(self, redis_key: str, window_seconds: int) -> int:
        ttl = await self.redis.ttl(redis_key)
        if ttl is None or ttl < 0:
            # Counter lost its expiry (crash between INCR and EXPIRE).
            await self.redis.expire(redis_key, window_seconds)
            ttl = window_seconds
        return int(ttl)

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitInfo:
        redis_key = f"{RATE_PREFIX}{key}"
        count = int(await self.redis.incr(redis_key))
        if count == 1:
            await self.redis.expire(redis_key, window_seconds)
        ttl = await self._ensure_expiry(redis_key, window_seconds)
        return RateLimitInfo(allowed=count <= limit, count=count, limit=limit, reset_in=ttl)

    async def peek(self, key: str, limit: int) -> RateLimitInfo:
        """Current state without counting a new message."""
        redis_key = f"{RATE_PREFIX}{key}"
        raw = await self.redis.get(redis_key)
        count = int(raw) if raw else 0
        ttl = await self.redis.ttl(redis_key) if raw else 0
        return RateLimitInfo(allowed=count <= limit, count=count, limit=limit, reset_in=max(int(ttl or 0), 0))

    async def reserve(self, key: str, amount: int, limit: int, window_seconds: int) -> int:
        """Take up to `amount` units of a window budget shared by every process. Returns the units granted."""
        if amount <= 0:
            return 0
        redis_key = f"{RATE_PREFIX}{key}"
        total = int(await self.redis.incrby(redis_key, amount))
        if total == amount:
            await self.redis.expire(redis_key, window_seconds)
        await self._ensure_expiry(redis_key, window_seconds)
        granted = max(min(amount, limit - (total - amount)), 0)
        if granted < amount:
            await self.refund(key, amount - granted)
        return granted

    async def refund(self, key: str, amount: int) -> None:
        if amount > 0:
            await self.redis.eval(REFUND_SCRIPT, 1, f"{RATE_PREFIX}{key}", amount)

    async def claim_notice(self, key: str, window_seconds: int) -> bool:
        """True for the first caller in a window; the "slow down" notice is sent once."""
        was_set = await self.redis.set(f"{RATE_PREFIX}notice:{key}", "1", ex=max(window_seconds, 1), nx=True)
        return bool(was_set)

    async def reset(self, key: str) -> None:
        await self.redis.delete(f"{RATE_PREFIX}{key}", f"{RATE_PREFIX}notice:{key}")
