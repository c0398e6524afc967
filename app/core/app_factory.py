from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (settings, stores, middleware, handlers,
routers) so tests can build isolated apps with their own counter store
and configuration.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.api.routes import governance_router, health_router, workflows_router
from app.core.config import RateLimitSettings, Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_rate_limit_middleware
from app.core.rate_limit_presets import build_policy_router
from app.core.request_size import (
    DynamicRequestSizeGuard,
    RequestSizeLimitMiddleware,
    RequestSizeMonitor,
)
from app.core.security import build_security_middleware, configure_cors
from app.services.governance_service import GovernanceService
from app.services.workflow_store import WorkflowStore


def build_rate_limit_store(
    cfg: RateLimitSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> AbstractRateLimitStore:
    """Create the counter store selected by ``RATE_LIMIT_STORAGE``."""
    if cfg.storage == "redis":
        return RedisRateLimitStore.from_url(cfg.redis_url, key_prefix=cfg.key_prefix, clock=clock)
    return InMemoryRateLimitStore(
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
        clock=clock,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store: AbstractRateLimitStore = app.state.rate_limit_store
    if isinstance(store, InMemoryRateLimitStore):
        store.start()
    try:
        yield
    finally:
        await store.close()


def create_app(
    app_settings: Settings | None = None,
    *,
    rate_limit_store: AbstractRateLimitStore | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the environment-loaded ones.
        rate_limit_store: Counter store to use instead of the configured one.
        clock: Time source shared by the store and the limiters.

    Returns:
        Configured app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Incident Workflow API",
        description=(
            "Incident-response workflow API: workflow tracking, agent outputs, "
            "governance decisions and audit export, protected by per-route rate "
            "limits and request size ceilings."
        ),
        version=cfg.app.api_version,
        lifespan=lifespan,
    )

    store = rate_limit_store or build_rate_limit_store(cfg.rate_limit, clock=clock)
    workflow_store = WorkflowStore()
    size_monitor = RequestSizeMonitor(
        large_request_threshold=cfg.request_size.large_request_threshold,
        log_threshold=cfg.request_size.log_request_threshold,
    )

    app.state.settings = cfg
    app.state.rate_limit_store = store
    app.state.workflow_store = workflow_store
    app.state.governance_service = GovernanceService(workflow_store)
    app.state.size_monitor = size_monitor

    # Middleware, innermost first: rate limit < size guard < security < CORS < request id
    if cfg.rate_limit.enabled:
        router = build_policy_router(
            cfg.rate_limit,
            store,
            api_prefix=cfg.app.api_prefix,
            trust_proxy=cfg.app.trust_proxy,
            clock=clock,
        )
        app.state.rate_limit_router = router
        app.middleware("http")(build_rate_limit_middleware(router))

    if cfg.request_size.enabled:
        guard = DynamicRequestSizeGuard.from_settings(cfg.request_size, api_prefix=cfg.app.api_prefix)
        app.add_middleware(RequestSizeLimitMiddleware, guard=guard, monitor=size_monitor)

    app.middleware("http")(build_security_middleware(cfg.app))
    configure_cors(app, cfg.app)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router, prefix=cfg.app.api_prefix)
    app.include_router(workflows_router, prefix=cfg.app.api_prefix)
    app.include_router(governance_router, prefix=cfg.app.api_prefix)

    # OpenAPI customizations (tags, documented 413/429 responses)
    apply_openapi_customizations(app)

    return app
