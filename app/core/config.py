"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()  # type: ignore[call-arg]


def _build_request_size_settings() -> "RequestSizeSettings":
    """Build request size settings from environment."""

    return RequestSizeSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    env: str = Field(
        APP_ENV,
        description="Deployment environment (development, testing, staging, production)",
    )
    api_version: str = Field(
        "1.0.0",
        description="Version string reported in every response envelope",
    )
    api_prefix: str = Field(
        "/api",
        description="Path prefix under which all API routes are mounted",
    )
    allowed_origins: str | None = Field(
        None,
        description="Comma-separated list of origins allowed by CORS in production",
    )
    trust_proxy: bool = Field(
        True,
        description="Honor X-Forwarded-For / X-Forwarded-Proto set by a reverse proxy",
    )
    security_headers_enabled: bool = Field(
        True,
        description="Attach CSP, frame, sniffing and referrer headers to every response",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    def allowed_origin_list(self) -> list[str]:
        """Parse the comma-separated origin allowlist."""
        if not self.allowed_origins:
            return []
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log output format: json (machine-friendly) or plain",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where to write logs: stdout or a rotating file",
    )
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration.

    Preset quotas default to the values documented in
    ``app.core.rate_limit_presets`` and can be tuned per environment.
    """

    enabled: bool = Field(True, description="Enable request rate limiting")
    storage: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store backend: in-process memory or shared Redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when storage=redis",
    )
    key_prefix: str = Field(
        "ratelimit:",
        description="Namespace prefix for counter keys in shared stores",
    )
    cleanup_interval_seconds: float = Field(
        60.0,
        description="Interval between expired-record sweeps of the in-memory store",
        gt=0,
    )
    standard_headers: bool = Field(
        True,
        description="Emit RateLimit-Limit/Remaining/Reset headers",
    )
    legacy_headers: bool = Field(
        False,
        description="Also emit X-RateLimit-* headers",
    )
    enhanced_keys: bool = Field(
        False,
        description="Key quotas on client address plus a user-agent fingerprint",
    )

    standard_max: int = Field(100, ge=1)
    standard_window_ms: int = Field(15 * 60 * 1000, ge=1)
    strict_max: int = Field(20, ge=1)
    strict_window_ms: int = Field(15 * 60 * 1000, ge=1)
    governance_max: int = Field(50, ge=1)
    governance_window_ms: int = Field(60 * 1000, ge=1)
    audit_export_max: int = Field(20, ge=1)
    audit_export_window_ms: int = Field(60 * 60 * 1000, ge=1)
    workflow_creation_max: int = Field(50, ge=1)
    workflow_creation_window_ms: int = Field(60 * 1000, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RequestSizeSettings(BaseSettings):
    """Request size guard configuration (all sizes in bytes)."""

    enabled: bool = Field(True, description="Reject requests above the route ceiling")
    include_headers: bool = Field(
        False,
        description="Count header names and values toward the request size",
    )
    skip_on_error: bool = Field(
        False,
        description="Let the request through when its size cannot be computed",
    )
    agent_outputs_max: int = Field(50 * 1024, ge=1)
    governance_max: int = Field(10 * 1024, ge=1)
    export_audit_max: int = Field(5 * 1024, ge=1)
    workflow_creation_max: int = Field(2 * 1024, ge=1)
    default_max: int = Field(10 * 1024, ge=1)
    large_request_threshold: int = Field(
        10 * 1024,
        description="Requests above this size are counted as large by the monitor",
    )
    log_request_threshold: int = Field(
        50 * 1024,
        description="Requests above this size are logged by the monitor",
    )

    model_config = SettingsConfigDict(
        env_prefix="REQUEST_SIZE_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if required settings are missing.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    request_size: RequestSizeSettings = Field(default_factory=_build_request_size_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
