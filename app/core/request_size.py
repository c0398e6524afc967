"""Request size limiting to keep oversized payloads away from handlers.

Size of a request = body bytes + URL bytes + method bytes, plus header
names and values when ``include_headers`` is set. Requests above the
route's ceiling are rejected with 413 before rate limiting or routing.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from fastapi import Request, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.config import RequestSizeSettings
from app.core.responses import error_json_response

logger = logging.getLogger(__name__)

KB = 1024

REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
VALIDATION_ERROR = "VALIDATION_ERROR"

LimitExceededCallback = Callable[[Request, int, int], None]


def _utf8_len(text: str) -> int:
    return len(text.encode("utf-8"))


def measure_body(body: Any) -> int:
    """Approximate wire size of a request body in bytes.

    Strings are measured as UTF-8, bytes-like objects by length, anything
    else as its compact JSON form. Objects that cannot be serialized are
    estimated from their ``repr`` instead of failing.
    """

    if body is None:
        return 0
    if isinstance(body, str):
        return _utf8_len(body)
    if isinstance(body, (bytes, bytearray, memoryview)):
        return len(body)
    try:
        return _utf8_len(json.dumps(body, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        # Rough estimate
        return len(repr(body)) * 2


def measure_headers(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> int:
    """Bytes of every header name concatenated with its value."""

    items = headers.items() if isinstance(headers, Mapping) else headers
    return sum(_utf8_len(name + value) for name, value in items)


def calculate_request_size(
    body: Any,
    *,
    headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    url: str = "",
    method: str = "",
    include_headers: bool = False,
) -> int:
    """Total request size used by the guard.

    Args:
        body: Raw or parsed request body.
        headers: Request headers; only counted when ``include_headers``.
        url: Path plus query string.
        method: HTTP method token.
        include_headers: Whether headers count toward the size.

    Returns:
        Size in bytes.
    """

    size = measure_body(body)
    if include_headers and headers is not None:
        size += measure_headers(headers)
    size += _utf8_len(url)
    size += _utf8_len(method)
    return size


def request_target(request: Request) -> str:
    """Path plus query string, as sent on the request line."""

    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


@dataclass(frozen=True)
class RequestSizePolicy:
    """Immutable size guard configuration.

    Attributes:
        max_size: Largest accepted request in bytes (inclusive).
        message: Client-facing message on 413.
        include_headers: Count headers toward the size.
        skip_on_error: Let the request through when size computation fails;
            otherwise reject it with 400.
        on_limit_exceeded: Synchronous observer ``(request, size, limit)``.
    """

    max_size: int
    message: str = "Request payload too large"
    include_headers: bool = False
    skip_on_error: bool = False
    on_limit_exceeded: LimitExceededCallback | None = None

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")


@dataclass(frozen=True)
class RequestSizeResult:
    """Outcome of a size check.

    Attributes:
        allowed: Whether the request may proceed.
        max_size: Ceiling that was applied.
        request_size: Computed size, None when computation failed.
        failed: Size computation raised.
    """

    allowed: bool
    max_size: int
    request_size: int | None = None
    failed: bool = False

    @property
    def size_exceeded_by(self) -> int:
        if self.request_size is None:
            return 0
        return max(0, self.request_size - self.max_size)


class RequestSizeGuard:
    """Applies one ``RequestSizePolicy``."""

    def __init__(self, policy: RequestSizePolicy) -> None:
        self.policy = policy

    def check(self, request: Request, body: Any) -> RequestSizeResult:
        """Measure the request and compare it to the ceiling.

        Args:
            request: Inbound request (URL, method and headers are read).
            body: Body already read from the request.
        """

        return self._decide(request, body, 0)

    def check_length(self, request: Request, body_length: int) -> RequestSizeResult:
        """Same as ``check`` for a body known only by its byte length."""

        return self._decide(request, b"", body_length)

    def _decide(self, request: Request, body: Any, extra_bytes: int) -> RequestSizeResult:
        policy = self.policy
        try:
            size = extra_bytes + calculate_request_size(
                body,
                headers=request.headers.items(),
                url=request_target(request),
                method=request.method,
                include_headers=policy.include_headers,
            )
        except Exception as exc:
            logger.error(
                "request_size.calculation_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "path": request.url.path,
                    "skip_on_error": policy.skip_on_error,
                },
            )
            return RequestSizeResult(
                allowed=policy.skip_on_error,
                max_size=policy.max_size,
                failed=True,
            )

        if size <= policy.max_size:
            return RequestSizeResult(allowed=True, max_size=policy.max_size, request_size=size)

        logger.warning(
            "request_size.rejected",
            extra={
                "request_size": size,
                "max_size": policy.max_size,
                "method": request.method,
                "path": request.url.path,
            },
        )
        if policy.on_limit_exceeded is not None:
            policy.on_limit_exceeded(request, size, policy.max_size)
        return RequestSizeResult(allowed=False, max_size=policy.max_size, request_size=size)

    def rejection_response(self, result: RequestSizeResult) -> Response:
        """413 for oversized requests, 400 when the size could not be computed."""

        if result.failed:
            return error_json_response(
                status_code=400,
                code=VALIDATION_ERROR,
                message="Unable to process request size validation",
            )
        return error_json_response(
            status_code=413,
            code=REQUEST_TOO_LARGE,
            message=self.policy.message,
            details={
                "requestSize": result.request_size,
                "maxSize": result.max_size,
                "sizeExceededBy": result.size_exceeded_by,
            },
        )


def _log_xlarge_request(request: Request, size: int, limit: int) -> None:
    logger.warning(
        "request_size.large_request_blocked",
        extra={"request_size": size, "max_size": limit, "path": request.url.path},
    )


REQUEST_SIZE_PRESETS: dict[str, RequestSizePolicy] = {
    "small": RequestSizePolicy(
        max_size=1 * KB,
        message="Request too large for this endpoint (max 1KB)",
    ),
    "medium": RequestSizePolicy(max_size=10 * KB, message="Request too large (max 10KB)"),
    "large": RequestSizePolicy(max_size=100 * KB, message="Request too large (max 100KB)"),
    "xlarge": RequestSizePolicy(
        max_size=1024 * KB,
        message="Request too large (max 1MB)",
        on_limit_exceeded=_log_xlarge_request,
    ),
}


@dataclass(frozen=True)
class RouteSizeLimit:
    """Size ceiling for requests whose path matches ``pattern``."""

    pattern: str
    max_size: int
    methods: frozenset[str] | None = None
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def matches(self, path: str, method: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self._compiled.search(path) is not None


class DynamicRequestSizeGuard:
    """Picks the size ceiling from a route table instead of one global limit."""

    def __init__(
        self,
        routes: Sequence[RouteSizeLimit],
        default_max: int,
        *,
        include_headers: bool = False,
        skip_on_error: bool = False,
    ) -> None:
        self.routes = tuple(routes)
        self.default_max = default_max
        self.include_headers = include_headers
        self.skip_on_error = skip_on_error

    @classmethod
    def from_settings(
        cls,
        cfg: RequestSizeSettings,
        *,
        api_prefix: str = "/api",
    ) -> "DynamicRequestSizeGuard":
        prefix = api_prefix.rstrip("/")
        routes = [
            RouteSizeLimit(r"/agent-outputs(/|$)", cfg.agent_outputs_max),
            RouteSizeLimit(r"/governance", cfg.governance_max),
            RouteSizeLimit(r"/export-audit(/|$)", cfg.export_audit_max),
            RouteSizeLimit(
                rf"^{prefix}/workflows/?$",
                cfg.workflow_creation_max,
                frozenset({"POST"}),
            ),
        ]
        return cls(
            routes,
            cfg.default_max,
            include_headers=cfg.include_headers,
            skip_on_error=cfg.skip_on_error,
        )

    def max_size_for(self, path: str, method: str) -> int:
        for route in self.routes:
            if route.matches(path, method):
                return route.max_size
        return self.default_max

    def guard_for(self, request: Request) -> RequestSizeGuard:
        path = request.url.path
        max_size = self.max_size_for(path, request.method)
        return RequestSizeGuard(
            RequestSizePolicy(
                max_size=max_size,
                message=f"Request too large for {path} (max {round(max_size / KB)}KB)",
                include_headers=self.include_headers,
                skip_on_error=self.skip_on_error,
            )
        )


class RequestSizeMonitor:
    """Running request size statistics (thread-safe)."""

    def __init__(
        self,
        *,
        large_request_threshold: int = 10 * KB,
        log_threshold: int = 50 * KB,
    ) -> None:
        self._large_threshold = large_request_threshold
        self._log_threshold = log_threshold
        self._lock = threading.Lock()
        self._total_requests = 0
        self._total_size = 0
        self._max_size = 0
        self._large_requests = 0

    def record(self, request: Request, size: int) -> None:
        with self._lock:
            self._total_requests += 1
            self._total_size += size
            self._max_size = max(self._max_size, size)
            if size > self._large_threshold:
                self._large_requests += 1

        if size > self._log_threshold:
            logger.info(
                "request_size.large_request",
                extra={"request_size": size, "method": request.method, "path": request.url.path},
            )

    def stats(self) -> dict[str, int | float]:
        with self._lock:
            average = self._total_size / self._total_requests if self._total_requests else 0.0
            return {
                "totalRequests": self._total_requests,
                "totalSize": self._total_size,
                "maxSize": self._max_size,
                "averageSize": average,
                "largeRequests": self._large_requests,
            }

    def reset(self) -> None:
        with self._lock:
            self._total_requests = 0
            self._total_size = 0
            self._max_size = 0
            self._large_requests = 0


def declared_content_length(request: Request) -> int | None:
    """``Content-Length`` as a non-negative int, None when absent or malformed."""

    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        return None
    return length if length >= 0 else None


class RequestSizeLimitMiddleware:
    """ASGI middleware enforcing per-route size ceilings.

    A declared ``Content-Length`` that already puts the request over its
    ceiling is rejected before any body is read. Otherwise the body is read
    chunk by chunk and rejected as soon as the running total passes the
    ceiling, so an undeclared or understated body is never buffered past the
    limit. The accepted body is replayed to the app and its size stored on
    ``request.state.request_size``.
    """

    def __init__(
        self,
        app: ASGIApp,
        guard: DynamicRequestSizeGuard,
        monitor: RequestSizeMonitor | None = None,
    ) -> None:
        self.app = app
        self.guard = guard
        self.monitor = monitor

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        route_guard = self.guard.guard_for(request)

        declared = declared_content_length(request)
        if declared is not None:
            result = route_guard.check_length(request, declared)
            if not result.allowed:
                logger.info(
                    "request_size.rejected_by_header",
                    extra={"declared_length": declared, "path": request.url.path},
                )
                await route_guard.rejection_response(result)(scope, receive, send)
                return

        chunks: list[bytes] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            if chunk:
                chunks.append(chunk)
                received += len(chunk)
                result = route_guard.check_length(request, received)
                if not result.allowed:
                    logger.info(
                        "request_size.rejected_by_streamed_read",
                        extra={"received_bytes": received, "path": request.url.path},
                    )
                    await route_guard.rejection_response(result)(scope, receive, send)
                    return
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        result = route_guard.check(request, body)
        if not result.allowed:
            await route_guard.rejection_response(result)(scope, receive, send)
            return

        if result.request_size is not None:
            request.state.request_size = result.request_size
            if self.monitor is not None:
                self.monitor.record(request, result.request_size)

        replayed = False

        async def replay_body() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay_body, send)
