from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.api.dependencies import get_size_monitor
from app.core.request_size import RequestSizeMonitor
from app.core.responses import create_success_response

router = APIRouter(tags=["System"])

FEATURES = [
    "workflow-management",
    "agent-output-tracking",
    "governance-gate-enforcement",
    "audit-trail-generation",
    "rate-limiting",
    "request-size-limiting",
]


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. Never rate limited.
    """

    app_settings = request.app.state.settings
    return create_success_response(
        {
            "status": "healthy",
            "services": {
                "workflowStore": "operational",
                "governanceGate": "operational",
            },
            "security": {
                "httpsEnforced": app_settings.app.is_production,
                "rateLimitingActive": app_settings.rate_limit.enabled,
                "requestSizeLimitingActive": app_settings.request_size.enabled,
            },
        }
    )


@router.get("/version")
def version_info(request: Request) -> dict:
    return create_success_response(
        {
            "version": request.app.state.settings.app.api_version,
            "apiVersion": "v1",
            "features": FEATURES,
        }
    )


@router.get("/metrics")
def request_metrics(
    monitor: Annotated[RequestSizeMonitor, Depends(get_size_monitor)],
) -> dict:
    """Request size statistics collected since startup."""

    return create_success_response({"requestSize": monitor.stats()})
