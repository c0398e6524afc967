"""Redis-backed counter store for multi-process deployments.

Each key is a hash ``{count, reset}`` that Redis expires at ``reset``.
``increment`` runs as one Lua script so that concurrent callers in
different processes never read-then-write the same count.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from app.core.errors import RateLimitStoreError

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, ARGV[1] = reset time (epoch ms) for a new window
INCREMENT_SCRIPT = """
local count = redis.call('HINCRBY', KEYS[1], 'count', 1)
local reset = tonumber(redis.call('HGET', KEYS[1], 'reset'))
if count == 1 or reset == nil then
    reset = tonumber(ARGV[1])
    redis.call('HSET', KEYS[1], 'reset', ARGV[1])
    redis.call('PEXPIREAT', KEYS[1], ARGV[1])
end
return {count, reset}
"""


class RedisRateLimitStore(AbstractRateLimitStore):
    """Counter store shared by every worker pointed at the same Redis."""

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "ratelimit:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock
        self._increment = client.register_script(INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisRateLimitStore":
        """Create a store with its own connection pool."""
        client = Redis.from_url(url, decode_responses=True)
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def _fail(self, operation: str, exc: RedisError) -> RateLimitStoreError:
        logger.error(
            "rate_limit.store.redis_error",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        return RateLimitStoreError(
            code="rate_limit_store_unavailable",
            message=f"Redis {operation} failed",
        )

    async def get(self, key: str) -> RateLimitRecord | None:
        try:
            count, reset = await self._client.hmget(self._key(key), "count", "reset")
        except RedisError as exc:
            raise self._fail("get", exc) from exc

        if count is None or reset is None:
            return None
        record = RateLimitRecord(count=int(count), reset_time_ms=int(reset))
        if record.is_expired(int(self._clock() * 1000)):
            return None
        return record

    async def set(self, key: str, count: int, reset_time_ms: int) -> None:
        redis_key = self._key(key)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(redis_key, mapping={"count": count, "reset": reset_time_ms})
                pipe.pexpireat(redis_key, reset_time_ms)
                await pipe.execute()
        except RedisError as exc:
            raise self._fail("set", exc) from exc

    async def increment(self, key: str, reset_time_ms: int) -> RateLimitRecord:
        try:
            count, reset = await self._increment(keys=[self._key(key)], args=[reset_time_ms])
        except RedisError as exc:
            raise self._fail("increment", exc) from exc
        return RateLimitRecord(count=int(count), reset_time_ms=int(reset))

    async def reset(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise self._fail("reset", exc) from exc

    async def close(self) -> None:
        await self._client.aclose()
