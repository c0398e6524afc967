"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so a request served from a
  threadpool and one served on the event loop cannot lose updates.
- Expired records are dropped lazily on read and eagerly by a periodic sweep.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord

logger = logging.getLogger(__name__)


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Dict-backed counter store with a cancelable background sweeper.

    Each instance owns its own state; create one per application (or per
    test) rather than sharing a module-level instance.
    """

    def __init__(
        self,
        *,
        cleanup_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            cleanup_interval_seconds: Delay between expiry sweeps once
                ``start()`` has been called.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If cleanup_interval_seconds is not positive.
        """
        if cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")

        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, RateLimitRecord] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _get_live_locked(self, key: str, now_ms: int) -> RateLimitRecord | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(now_ms):
            del self._records[key]
            return None
        return record

    async def get(self, key: str) -> RateLimitRecord | None:
        with self._lock:
            return self._get_live_locked(key, self._now_ms())

    async def set(self, key: str, count: int, reset_time_ms: int) -> None:
        with self._lock:
            self._records[key] = RateLimitRecord(count=count, reset_time_ms=reset_time_ms)

    async def increment(self, key: str, reset_time_ms: int) -> RateLimitRecord:
        with self._lock:
            existing = self._get_live_locked(key, self._now_ms())
            if existing is None:
                record = RateLimitRecord(count=1, reset_time_ms=reset_time_ms)
            else:
                record = RateLimitRecord(
                    count=existing.count + 1,
                    reset_time_ms=existing.reset_time_ms,
                )
            self._records[key] = record
            return record

    async def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def sweep(self) -> int:
        """Delete every expired record.

        Returns:
            Number of records removed.
        """
        now_ms = self._now_ms()
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now_ms)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug("rate_limit.store.swept", extra={"removed": len(expired)})
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweeper on the running event loop.

        Calling it again while the sweeper is alive is a no-op.
        """
        if self._sweeper is not None and not self._sweeper.done():
            return
        loop = asyncio.get_running_loop()
        self._sweeper = loop.create_task(self._sweep_forever(), name="rate-limit-sweeper")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def close(self) -> None:
        """Cancel the sweeper and drop all records."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        with self._lock:
            self._records.clear()
