"""Counter store interface.

The API depends on this abstraction (not the concrete implementation) so
the storage backend can be swapped (e.g., Redis) with no changes at the
call sites. Every operation is a coroutine, even for in-process storage.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitRecord:
    """Request count for one key in its current window.

    Attributes:
        count: Requests observed in the current window.
        reset_time_ms: UNIX epoch milliseconds at which the window expires.
    """

    count: int
    reset_time_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.reset_time_ms


class AbstractRateLimitStore(ABC):
    """Key -> (count, reset time) storage."""

    @abstractmethod
    async def get(self, key: str) -> RateLimitRecord | None:
        """Return the live record for ``key`` or None if absent/expired."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, count: int, reset_time_ms: int) -> None:
        """Unconditionally overwrite the record for ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str, reset_time_ms: int) -> RateLimitRecord:
        """Atomically count one request against ``key``.

        Args:
            key: Rate limit identity.
            reset_time_ms: Expiry to use only when a new window is opened.
                A live window keeps its original reset time.

        Returns:
            The record after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Delete the record for ``key``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections and stop background work."""
        return None
