"""Rate limiting policy engine and HTTP middleware.

Algorithm: fixed window per key. The first request for a key opens a
window of ``window_ms``; every request inside it increments the count;
the request that pushes the count past ``max_requests`` is denied with
429 until the window's reset time. A burst straddling a window boundary
can therefore pass up to ``2 * max_requests`` requests.

Design goals:
- Swap-friendly: all state lives behind ``AbstractRateLimitStore``.
- Fail open: a store failure is logged and the request is allowed.
- Skip counting by outcome (``skip_successful_requests`` /
  ``skip_failed_requests``) is a best-effort decrement applied after the
  response is produced. It is not atomic with concurrent requests on the
  same key and may briefly over-count; that approximation is accepted.
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from fastapi import Request, Response

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.key_derivation import UNKNOWN_CLIENT, default_key_generator
from app.core.logging import hash_for_logging
from app.core.responses import error_json_response

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[Request], str]
SkipPredicate = Callable[[Request], bool]
LimitReachedCallback = Callable[[Request, "RateLimitResult"], None]
CallNext = Callable[[Request], Awaitable[Response]]

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable limiter configuration, built once per route class.

    Attributes:
        name: Preset name, used in logs.
        window_ms: Window length in milliseconds.
        max_requests: Requests allowed per window (inclusive).
        message: Client-facing message on 429.
        standard_headers: Emit ``RateLimit-*`` headers.
        legacy_headers: Emit ``X-RateLimit-*`` headers.
        skip_successful_requests: Uncount requests answered with 2xx.
        skip_failed_requests: Uncount requests answered with >= 400.
        key_generator: Maps a request to its quota identity.
        skip: Requests matching this predicate are never counted.
        on_limit_reached: Synchronous observer called for each denial.
    """

    name: str
    window_ms: int
    max_requests: int
    message: str = "Too many requests, please try again later"
    standard_headers: bool = True
    legacy_headers: bool = False
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    key_generator: KeyGenerator = default_key_generator
    skip: SkipPredicate | None = None
    on_limit_reached: LimitReachedCallback | None = None

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        count: Requests counted in the current window, this one included.
        remaining: ``max(0, limit - count)``.
        reset_time_ms: Epoch milliseconds when the window resets.
        retry_after_seconds: Seconds to wait; set only on denial.
        key: Derived rate limit identity.
        skipped: The skip predicate matched; nothing was counted.
        degraded: The store failed and the request was allowed anyway.
    """

    allowed: bool
    limit: int
    count: int = 0
    remaining: int = 0
    reset_time_ms: int | None = None
    retry_after_seconds: int | None = None
    key: str | None = None
    skipped: bool = False
    degraded: bool = False


def format_reset_time(reset_time_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2024-01-01T00:15:00.000Z``."""

    seconds, millis = divmod(int(reset_time_ms), 1000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


class RateLimiter:
    """Applies one ``RateLimitPolicy`` against a counter store."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: AbstractRateLimitStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._store = store
        self._clock = clock

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"RateLimiter(name={self.policy.name!r}, max={self.policy.max_requests}, "
            f"window_ms={self.policy.window_ms})"
        )

    def _derive_key(self, request: Request) -> str:
        try:
            key = self.policy.key_generator(request)
        except Exception as exc:
            logger.warning(
                "rate_limit.key_generation_failed",
                extra={"policy": self.policy.name, "error_type": type(exc).__name__},
            )
            return UNKNOWN_CLIENT
        return key or UNKNOWN_CLIENT

    def _should_skip(self, request: Request) -> bool:
        if self.policy.skip is None:
            return False
        try:
            return bool(self.policy.skip(request))
        except Exception as exc:
            logger.warning(
                "rate_limit.skip_predicate_failed",
                extra={"policy": self.policy.name, "error_type": type(exc).__name__},
            )
            return False

    def _notify_limit_reached(self, request: Request, result: RateLimitResult) -> None:
        callback = self.policy.on_limit_reached
        if callback is None:
            return
        try:
            callback(request, result)
        except Exception:
            logger.exception(
                "rate_limit.on_limit_reached_failed",
                extra={"policy": self.policy.name},
            )

    async def check(self, request: Request) -> RateLimitResult:
        """Count the request and decide whether it may proceed.

        Args:
            request: Inbound request.

        Returns:
            RateLimitResult; ``allowed`` is False once the count exceeds
            ``max_requests`` within the current window.
        """

        policy = self.policy
        if self._should_skip(request):
            return RateLimitResult(allowed=True, limit=policy.max_requests, skipped=True)

        key = self._derive_key(request)
        now_ms = int(self._clock() * 1000)

        try:
            record = await self._store.increment(key, now_ms + policy.window_ms)
        except Exception as exc:
            logger.error(
                "rate_limit.store_failed",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_for_logging(key),
                    "error_type": type(exc).__name__,
                },
            )
            return RateLimitResult(
                allowed=True,
                limit=policy.max_requests,
                key=key,
                degraded=True,
            )

        remaining = max(0, policy.max_requests - record.count)

        if record.count <= policy.max_requests:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_for_logging(key),
                    "count": record.count,
                    "remaining": remaining,
                },
            )
            return RateLimitResult(
                allowed=True,
                limit=policy.max_requests,
                count=record.count,
                remaining=remaining,
                reset_time_ms=record.reset_time_ms,
                key=key,
            )

        retry_after = max(0, math.ceil((record.reset_time_ms - now_ms) / 1000))
        result = RateLimitResult(
            allowed=False,
            limit=policy.max_requests,
            count=record.count,
            remaining=remaining,
            reset_time_ms=record.reset_time_ms,
            retry_after_seconds=retry_after,
            key=key,
        )
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": policy.name,
                "key_hash": hash_for_logging(key),
                "limit": policy.max_requests,
                "count": record.count,
                "window_ms": policy.window_ms,
                "retry_after_s": retry_after,
            },
        )
        self._notify_limit_reached(request, result)
        return result

    def build_headers(self, result: RateLimitResult) -> dict[str, str]:
        """Quota headers for a counted request (empty when nothing was counted)."""

        if result.skipped or result.degraded or result.reset_time_ms is None:
            return {}

        headers: dict[str, str] = {}
        remaining = str(max(0, result.limit - result.count))

        if self.policy.standard_headers:
            headers["RateLimit-Limit"] = str(result.limit)
            headers["RateLimit-Remaining"] = remaining
            headers["RateLimit-Reset"] = format_reset_time(result.reset_time_ms)

        if self.policy.legacy_headers:
            headers["X-RateLimit-Limit"] = str(result.limit)
            headers["X-RateLimit-Remaining"] = remaining
            headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_time_ms / 1000))

        if not result.allowed and result.retry_after_seconds is not None:
            headers["Retry-After"] = str(result.retry_after_seconds)

        return headers

    def build_limit_exceeded_response(self, result: RateLimitResult) -> Response:
        """429 response with ``Retry-After`` and the structured error body."""

        reset_time = (
            format_reset_time(result.reset_time_ms) if result.reset_time_ms is not None else None
        )
        return error_json_response(
            status_code=429,
            code=RATE_LIMIT_EXCEEDED,
            message=self.policy.message,
            details={
                "limit": self.policy.max_requests,
                "windowMs": self.policy.window_ms,
                "retryAfter": result.retry_after_seconds,
                "resetTime": reset_time,
            },
            headers=self.build_headers(result),
        )

    def should_uncount(self, status_code: int) -> bool:
        """Whether a response status falls in a class this policy does not count."""

        if self.policy.skip_successful_requests and 200 <= status_code < 300:
            return True
        if self.policy.skip_failed_requests and status_code >= 400:
            return True
        return False

    async def record_outcome(self, result: RateLimitResult, status_code: int) -> None:
        """Take back one count when the response status is in a skipped class.

        Best effort: read-modify-write against the store, racing with any
        concurrent request on the same key. Failures are logged only.
        """

        if not result.allowed or result.skipped or result.degraded or result.key is None:
            return
        if not self.should_uncount(status_code):
            return

        key = result.key
        try:
            record = await self._store.get(key)
            if record is None:
                return
            new_count = record.count - 1
            if new_count <= 0:
                await self._store.reset(key)
            else:
                await self._store.set(key, new_count, record.reset_time_ms)
        except Exception as exc:
            logger.error(
                "rate_limit.uncount_failed",
                extra={
                    "policy": self.policy.name,
                    "key_hash": hash_for_logging(key),
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                },
            )


@dataclass(frozen=True)
class RouteRateLimit:
    """Binds a limiter to requests whose path matches ``pattern``.

    Attributes:
        pattern: Regular expression matched against the URL path.
        limiter: Limiter applied on match.
        methods: HTTP methods the rule applies to (None means all).
    """

    pattern: str
    limiter: RateLimiter
    methods: frozenset[str] | None = None
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def matches(self, path: str, method: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self._compiled.search(path) is not None


class RateLimitPolicyRouter:
    """Selects the limiters that apply to a request.

    Every request is checked against the global limiter (if any), then
    against the first route rule that matches.
    """

    def __init__(
        self,
        global_limiter: RateLimiter | None = None,
        routes: Sequence[RouteRateLimit] = (),
    ) -> None:
        self.global_limiter = global_limiter
        self.routes = tuple(routes)

    def resolve(self, request: Request) -> list[RateLimiter]:
        limiters: list[RateLimiter] = []
        if self.global_limiter is not None:
            limiters.append(self.global_limiter)

        path, method = request.url.path, request.method
        for route in self.routes:
            if route.matches(path, method):
                limiters.append(route.limiter)
                break
        return limiters


def build_rate_limit_middleware(router: RateLimitPolicyRouter):
    """Create the HTTP middleware enforcing the router's limiters.

    Usage:
        app.middleware("http")(build_rate_limit_middleware(router))
    """

    async def rate_limit_middleware(request: Request, call_next: CallNext) -> Response:
        checked: list[tuple[RateLimiter, RateLimitResult]] = []
        headers: dict[str, str] = {}

        for limiter in router.resolve(request):
            result = await limiter.check(request)
            if not result.allowed:
                return limiter.build_limit_exceeded_response(result)
            checked.append((limiter, result))
            headers.update(limiter.build_headers(result))

        if checked:
            request.state.rate_limit = checked[-1][1]

        response = await call_next(request)

        for name, value in headers.items():
            response.headers[name] = value

        for limiter, result in checked:
            await limiter.record_outcome(result, response.status_code)

        return response

    return rate_limit_middleware
