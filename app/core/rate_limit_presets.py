"""Named rate limit presets and the route table that mounts them.

| Preset            | Window | Quota | Routes                                   |
|-------------------|--------|-------|------------------------------------------|
| standard          | 15 min | 100   | every API request                        |
| strict            | 15 min | 20    | workflow state changes and termination   |
| governance        | 1 min  | 50    | governance decision submission           |
| audit_export      | 1 hour | 20    | audit artifact export                    |
| workflow_creation | 1 min  | 50    | workflow creation                        |

Quotas and windows come from ``RateLimitSettings`` so each environment can
tune them; the algorithm is the same for every preset.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import time
from typing import Any, Callable

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.config import RateLimitSettings
from app.core.key_derivation import (
    UNKNOWN_CLIENT,
    default_key_generator,
    enhanced_key_generator,
    skip_system_endpoints,
)
from app.core.logging import hash_for_logging
from app.core.rate_limit import (
    RateLimitPolicy,
    RateLimitPolicyRouter,
    RateLimiter,
    RateLimitResult,
    RouteRateLimit,
)

logger = logging.getLogger(__name__)

STANDARD = "standard"
STRICT = "strict"
GOVERNANCE = "governance"
AUDIT_EXPORT = "audit_export"
WORKFLOW_CREATION = "workflow_creation"

PRESET_NAMES: tuple[str, ...] = (STANDARD, STRICT, GOVERNANCE, AUDIT_EXPORT, WORKFLOW_CREATION)

PRESET_MESSAGES: dict[str, str] = {
    STANDARD: "Too many requests, please try again later",
    STRICT: "Too many requests for this sensitive operation",
    GOVERNANCE: "Too many governance decisions, please wait before submitting more",
    AUDIT_EXPORT: "Too many audit export requests, please wait before requesting more exports",
    WORKFLOW_CREATION: "Too many workflow creation requests, please slow down",
}


def _log_governance_limit(request: Request, result: RateLimitResult) -> None:
    logger.warning(
        "rate_limit.governance_exceeded",
        extra={
            "key_hash": hash_for_logging(result.key or UNKNOWN_CLIENT),
            "path": request.url.path,
            "retry_after_s": result.retry_after_seconds,
        },
    )


_LIMIT_REACHED_HOOKS: dict[str, Callable[[Request, RateLimitResult], None]] = {
    GOVERNANCE: _log_governance_limit,
}


def build_preset(
    name: str,
    cfg: RateLimitSettings,
    *,
    trust_proxy: bool = True,
    **overrides: Any,
) -> RateLimitPolicy:
    """Build the policy for a named preset.

    Args:
        name: One of ``PRESET_NAMES``.
        cfg: Rate limit settings supplying quota, window and header flags.
        trust_proxy: Key on the first ``X-Forwarded-For`` hop when present.
        **overrides: Any ``RateLimitPolicy`` field to replace.

    Raises:
        ValueError: If ``name`` is not a known preset.
    """

    if name not in PRESET_NAMES:
        raise ValueError(f"unknown rate limit preset: {name}")

    generator = enhanced_key_generator if cfg.enhanced_keys else default_key_generator
    policy = RateLimitPolicy(
        name=name,
        window_ms=getattr(cfg, f"{name}_window_ms"),
        max_requests=getattr(cfg, f"{name}_max"),
        message=PRESET_MESSAGES[name],
        standard_headers=cfg.standard_headers,
        legacy_headers=cfg.legacy_headers,
        key_generator=functools.partial(generator, trust_proxy=trust_proxy),
        skip=skip_system_endpoints,
        on_limit_reached=_LIMIT_REACHED_HOOKS.get(name),
    )
    return dataclasses.replace(policy, **overrides) if overrides else policy


def build_policy_router(
    cfg: RateLimitSettings,
    store: AbstractRateLimitStore,
    *,
    api_prefix: str = "/api",
    trust_proxy: bool = True,
    clock: Callable[[], float] = time.time,
) -> RateLimitPolicyRouter:
    """Mount every preset on its route class.

    The standard limiter applies to all requests; route-class limiters are
    checked after it, first match wins.
    """

    limiters = {
        name: RateLimiter(build_preset(name, cfg, trust_proxy=trust_proxy), store, clock=clock)
        for name in PRESET_NAMES
    }
    prefix = api_prefix.rstrip("/")
    workflow = rf"^{prefix}/workflows/[^/]+"

    routes = [
        RouteRateLimit(rf"{workflow}/governance-decision/?$", limiters[GOVERNANCE]),
        RouteRateLimit(rf"^{prefix}/governance(/|$)", limiters[GOVERNANCE]),
        RouteRateLimit(rf"{workflow}/export-audit/?$", limiters[AUDIT_EXPORT]),
        RouteRateLimit(rf"{workflow}/state/?$", limiters[STRICT], frozenset({"PUT"})),
        RouteRateLimit(rf"{workflow}/terminate/?$", limiters[STRICT], frozenset({"POST"})),
        RouteRateLimit(
            rf"^{prefix}/workflows/?$",
            limiters[WORKFLOW_CREATION],
            frozenset({"POST"}),
        ),
    ]
    return RateLimitPolicyRouter(global_limiter=limiters[STANDARD], routes=routes)
