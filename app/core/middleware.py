"""HTTP middleware for request correlation and access logging.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id
from app.core.responses import clear_api_version, set_api_version

logger = logging.getLogger("app.access")


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a correlation id and log one access line per request.

    The incoming ``X-Request-ID`` (header name configurable via
    ``LOG_REQUEST_ID_HEADER``) is reused when present, otherwise a UUID is
    generated. It is echoed on the response together with the total
    duration in ``X-Request-Duration-ms``. The app's API version is bound
    for the same span so every envelope built downstream reports it.
    """

    cfg = getattr(request.app.state, "settings", settings)
    header_name = cfg.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    set_api_version(cfg.app.api_version)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "request_size": getattr(request.state, "request_size", None),
            },
        )
    finally:
        clear_request_id()
        clear_api_version()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
