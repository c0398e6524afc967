from __future__ import annotations

from app.api.routes.governance import router as governance_router
from app.api.routes.health import router as health_router
from app.api.routes.workflows import router as workflows_router

__all__ = ["governance_router", "health_router", "workflows_router"]
