"""Rate limit counter stores.

The policy engine depends only on ``AbstractRateLimitStore`` so the process
can start on the in-memory store and move to Redis (shared across workers)
without touching the HTTP layer.
"""

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitRecord",
    "RedisRateLimitStore",
]
