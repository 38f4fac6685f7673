"""Idempotency keys for inbound provider message IDs, finished AI turns and dispatched replies."""

import json
from typing import Optional

PROCESSED_PREFIX = "twilio:processed:"
TURN_PREFIX = "turn:"
REPLY_PREFIX = "reply:"


class IdempotencyStore:
    def __init__(self, redis_client, ttl_seconds: int = 86400):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def claim(self, message_id: str, ttl_seconds: int | None = None) -> bool:
        """Atomically mark `message_id` as accepted. False means it was already seen."""
        key = f"{PROCESSED_PREFIX}{message_id}"
        was_set = await self.redis.set(key, "1", ex=ttl_seconds or self.ttl_seconds, nx=True)
        return bool(was_set)

    async def release(self, message_id: str) -> None:
        await self.redis.delete(f"{PROCESSED_PREFIX}{message_id}")

    async def is_processed(self, message_id: str) -> bool:
        return await self.redis.get(f"{PROCESSED_PREFIX}{message_id}") is not None

    async def save_turn(self, message_id: str, turn: dict) -> None:
        """Keep a finished AI turn so a redelivered job replays it instead of re-running tools."""
        await self.redis.set(f"{TURN_PREFIX}{message_id}", json.dumps(turn), ex=self.ttl_seconds)

    async def load_turn(self, message_id: str) -> Optional[dict]:
        raw = await self.redis.get(f"{TURN_PREFIX}{message_id}")
        return json.loads(raw) if raw else None

    async def mark_replied(self, message_id: str) -> bool:
        key = f"{REPLY_PREFIX}{message_id}"
        was_set = await self.redis.set(key, "1", ex=self.ttl_seconds, nx=True)
        return bool(was_set)

    async def has_replied(self, message_id: str) -> bool:
        return await self.redis.get(f"{REPLY_PREFIX}{message_id}") is not None
