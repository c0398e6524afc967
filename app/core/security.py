"""Security headers, HTTPS enforcement and CORS wiring.

Headers are attached to every response, error responses included, so
the middleware must sit outside the rate limit and size guards.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from app.core.config import AppSettings

DEFAULT_CSP = (
    "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data:; connect-src 'self'; font-src 'self'; object-src 'none'; "
    "media-src 'self'; frame-src 'none';"
)

DEFAULT_PERMISSIONS_POLICY = (
    "geolocation=(), microphone=(), camera=(), payment=(), usb=(), "
    "magnetometer=(), gyroscope=(), speaker=()"
)

CORS_ALLOWED_HEADERS = [
    "Origin",
    "X-Requested-With",
    "Content-Type",
    "Accept",
    "Authorization",
    "X-API-Key",
    "X-Request-ID",
]

CORS_EXPOSED_HEADERS = [
    "RateLimit-Limit",
    "RateLimit-Remaining",
    "RateLimit-Reset",
    "Retry-After",
    "X-Request-ID",
]


@dataclass(frozen=True)
class SecurityHeaderConfig:
    content_security_policy: str | None = DEFAULT_CSP
    frame_options: str | None = "DENY"
    content_type_options: bool = True
    xss_protection: bool = True
    referrer_policy: str | None = "strict-origin-when-cross-origin"
    hsts_max_age: int | None = 31536000
    hsts_include_subdomains: bool = True
    hsts_preload: bool = True
    permissions_policy: str | None = DEFAULT_PERMISSIONS_POLICY

    def hsts_value(self) -> str | None:
        if self.hsts_max_age is None:
            return None
        value = f"max-age={self.hsts_max_age}"
        if self.hsts_include_subdomains:
            value += "; includeSubDomains"
        if self.hsts_preload:
            value += "; preload"
        return value


def is_secure_request(request: Request, *, trust_proxy: bool) -> bool:
    if request.url.scheme == "https":
        return True
    return trust_proxy and request.headers.get("X-Forwarded-Proto", "").lower() == "https"


def build_security_headers(
    config: SecurityHeaderConfig,
    *,
    secure: bool,
) -> dict[str, str]:
    """Headers to attach to a response. HSTS only goes out over HTTPS."""

    headers: dict[str, str] = {}
    if config.content_security_policy:
        headers["Content-Security-Policy"] = config.content_security_policy
    if config.frame_options:
        headers["X-Frame-Options"] = config.frame_options
    if config.content_type_options:
        headers["X-Content-Type-Options"] = "nosniff"
    if config.xss_protection:
        headers["X-XSS-Protection"] = "1; mode=block"
    if config.referrer_policy:
        headers["Referrer-Policy"] = config.referrer_policy
    hsts = config.hsts_value()
    if secure and hsts:
        headers["Strict-Transport-Security"] = hsts
    if config.permissions_policy:
        headers["Permissions-Policy"] = config.permissions_policy

    headers["X-DNS-Prefetch-Control"] = "off"
    headers["X-Download-Options"] = "noopen"
    headers["X-Permitted-Cross-Domain-Policies"] = "none"
    return headers


def build_security_middleware(
    app_settings: AppSettings,
    config: SecurityHeaderConfig | None = None,
):
    """Middleware adding security headers and, in production, forcing HTTPS."""

    header_config = config or SecurityHeaderConfig()

    async def security_middleware(request: Request, call_next) -> Response:
        secure = is_secure_request(request, trust_proxy=app_settings.trust_proxy)

        if app_settings.is_production and not secure:
            target = request.url.replace(scheme="https")
            return RedirectResponse(str(target), status_code=301)

        response: Response = await call_next(request)
        if app_settings.security_headers_enabled:
            for name, value in build_security_headers(header_config, secure=secure).items():
                response.headers[name] = value
        return response

    return security_middleware


def configure_cors(app: FastAPI, app_settings: AppSettings) -> None:
    """Allow every origin outside production; the allowlist in production."""

    origins = app_settings.allowed_origin_list() if app_settings.is_production else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=CORS_ALLOWED_HEADERS,
        expose_headers=CORS_EXPOSED_HEADERS,
        max_age=86400,
    )
