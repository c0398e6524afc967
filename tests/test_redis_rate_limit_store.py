"""Unit tests for the Redis counter store (Redis client mocked)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.adapters.rate_limit.base import RateLimitRecord
from app.adapters.rate_limit.redis_store import INCREMENT_SCRIPT, RedisRateLimitStore
from app.core.errors import RateLimitStoreError


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = AsyncMock()
    client.hmget = AsyncMock()
    client.delete = AsyncMock()
    client.aclose = AsyncMock()
    return client


def test_registers_increment_script(redis_client: MagicMock) -> None:
    RedisRateLimitStore(redis_client)

    redis_client.register_script.assert_called_once_with(INCREMENT_SCRIPT)


def test_increment_runs_script_with_prefixed_key(redis_client: MagicMock) -> None:
    script = redis_client.register_script.return_value
    script.return_value = [3, 1_700_000_060_000]
    store = RedisRateLimitStore(redis_client, key_prefix="rl:")

    record = asyncio.run(store.increment("10.0.0.1", 1_700_000_090_000))

    script.assert_awaited_once_with(keys=["rl:10.0.0.1"], args=[1_700_000_090_000])
    assert record == RateLimitRecord(count=3, reset_time_ms=1_700_000_060_000)


def test_get_parses_hash_fields(redis_client: MagicMock, clock) -> None:
    reset = int(clock() * 1000) + 5_000
    redis_client.hmget.return_value = ["4", str(reset)]
    store = RedisRateLimitStore(redis_client, clock=clock)

    assert asyncio.run(store.get("k")) == RateLimitRecord(count=4, reset_time_ms=reset)
    redis_client.hmget.assert_awaited_once_with("ratelimit:k", "count", "reset")


def test_get_treats_missing_or_expired_as_absent(redis_client: MagicMock, clock) -> None:
    store = RedisRateLimitStore(redis_client, clock=clock)

    redis_client.hmget.return_value = [None, None]
    assert asyncio.run(store.get("k")) is None

    redis_client.hmget.return_value = ["2", str(int(clock() * 1000) - 1)]
    assert asyncio.run(store.get("k")) is None


def test_reset_deletes_key(redis_client: MagicMock) -> None:
    store = RedisRateLimitStore(redis_client)

    asyncio.run(store.reset("k"))

    redis_client.delete.assert_awaited_once_with("ratelimit:k")


def test_redis_errors_are_wrapped(redis_client: MagicMock) -> None:
    redis_client.register_script.return_value.side_effect = RedisConnectionError("down")
    store = RedisRateLimitStore(redis_client)

    with pytest.raises(RateLimitStoreError) as exc_info:
        asyncio.run(store.increment("k", 1))

    assert exc_info.value.code == "rate_limit_store_unavailable"
    assert "down" not in exc_info.value.message


def test_close_closes_client(redis_client: MagicMock) -> None:
    store = RedisRateLimitStore(redis_client)

    asyncio.run(store.close())

    redis_client.aclose.assert_awaited_once()
