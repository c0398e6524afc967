"""Unit tests for the in-memory counter store."""

import asyncio

import pytest

from app.adapters.rate_limit.base import RateLimitRecord
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore


def _now_ms(clock) -> int:
    return int(clock() * 1000)


def test_increment_creates_window_with_supplied_reset(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    reset = _now_ms(clock) + 60_000

    record = asyncio.run(store.increment("k", reset))

    assert record == RateLimitRecord(count=1, reset_time_ms=reset)


def test_increment_keeps_existing_reset_time(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    first_reset = _now_ms(clock) + 60_000

    asyncio.run(store.increment("k", first_reset))
    clock.advance(10)
    record = asyncio.run(store.increment("k", _now_ms(clock) + 60_000))

    assert record.count == 2
    assert record.reset_time_ms == first_reset


def test_expired_window_starts_fresh(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)

    for _ in range(5):
        asyncio.run(store.increment("k", _now_ms(clock) + 1_000))

    clock.advance(1)
    new_reset = _now_ms(clock) + 1_000
    record = asyncio.run(store.increment("k", new_reset))

    assert record.count == 1
    assert record.reset_time_ms == new_reset


def test_get_returns_none_for_missing_and_expired(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    assert asyncio.run(store.get("missing")) is None

    asyncio.run(store.set("k", 3, _now_ms(clock) + 500))
    assert asyncio.run(store.get("k")) == RateLimitRecord(3, _now_ms(clock) + 500)

    clock.advance(0.5)
    assert asyncio.run(store.get("k")) is None
    # Lazily removed on read
    assert len(store) == 0


def test_set_overwrites_and_reset_deletes(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    reset = _now_ms(clock) + 60_000

    asyncio.run(store.increment("k", reset))
    asyncio.run(store.set("k", 7, reset))
    assert asyncio.run(store.get("k")).count == 7

    asyncio.run(store.reset("k"))
    assert asyncio.run(store.get("k")) is None
    asyncio.run(store.reset("k"))  # deleting twice is fine


def test_keys_are_isolated(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    reset = _now_ms(clock) + 60_000

    asyncio.run(store.increment("a", reset))
    asyncio.run(store.increment("a", reset))
    record_b = asyncio.run(store.increment("b", reset))

    assert record_b.count == 1


def test_concurrent_increments_are_not_lost(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    reset = _now_ms(clock) + 60_000

    async def hammer() -> list[RateLimitRecord]:
        return await asyncio.gather(*(store.increment("fresh", reset) for _ in range(250)))

    records = asyncio.run(hammer())

    assert sorted(r.count for r in records) == list(range(1, 251))
    assert asyncio.run(store.get("fresh")).count == 250


def test_sweep_removes_only_expired(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    now = _now_ms(clock)
    asyncio.run(store.set("short", 1, now + 1_000))
    asyncio.run(store.set("long", 1, now + 60_000))

    clock.advance(2)
    removed = store.sweep()

    assert removed == 1
    assert len(store) == 1
    assert asyncio.run(store.get("long")) is not None


def test_background_sweeper_runs_and_is_cancelable(clock) -> None:
    store = InMemoryRateLimitStore(cleanup_interval_seconds=0.01, clock=clock)

    async def scenario() -> tuple[int, bool, bool]:
        await store.set("k", 1, _now_ms(clock) + 1_000)
        store.start()
        running = store.sweeper_running
        clock.advance(5)
        await asyncio.sleep(0.05)
        size_after_sweep = len(store)
        await store.close()
        return size_after_sweep, running, store.sweeper_running

    size_after_sweep, was_running, still_running = asyncio.run(scenario())

    assert was_running is True
    assert size_after_sweep == 0
    assert still_running is False


def test_start_is_idempotent(clock) -> None:
    store = InMemoryRateLimitStore(cleanup_interval_seconds=60, clock=clock)

    async def scenario() -> bool:
        store.start()
        first = store._sweeper
        store.start()
        same = store._sweeper is first
        await store.close()
        return same

    assert asyncio.run(scenario()) is True


def test_close_clears_records(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock)
    asyncio.run(store.increment("k", _now_ms(clock) + 1_000))

    asyncio.run(store.close())

    assert len(store) == 0


def test_invalid_cleanup_interval() -> None:
    with pytest.raises(ValueError):
        InMemoryRateLimitStore(cleanup_interval_seconds=0)
