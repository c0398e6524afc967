"""OpenAPI customization utilities.

Enriches the generated schema with:
- Tags metadata
- The shared error envelope component
- Documented 413/429 responses on every operation the guards protect

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.key_derivation import SYSTEM_PATHS

ERROR_ENVELOPE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["success", "error", "timestamp", "version"],
    "properties": {
        "success": {"type": "boolean", "enum": [False]},
        "error": {
            "type": "object",
            "required": ["code", "message"],
            "properties": {
                "code": {"type": "string"},
                "message": {"type": "string"},
                "details": {"type": "object"},
                "request_id": {"type": "string"},
            },
        },
        "timestamp": {"type": "string", "format": "date-time"},
        "version": {"type": "string"},
    },
}

_ERROR_REF = {"$ref": "#/components/schemas/ErrorEnvelope"}

GUARD_RESPONSES: Dict[str, Dict[str, Any]] = {
    "413": {
        "description": "Request exceeds the route's size ceiling (REQUEST_TOO_LARGE).",
        "content": {"application/json": {"schema": _ERROR_REF}},
    },
    "429": {
        "description": "Rate limit exceeded (RATE_LIMIT_EXCEEDED). See Retry-After.",
        "headers": {"Retry-After": {"schema": {"type": "integer"}}},
        "content": {"application/json": {"schema": _ERROR_REF}},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and guard responses.

    System endpoints (health, version, metrics) are exempt from rate
    limiting, so only the 413 response is added to them.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("schemas", {}).setdefault("ErrorEnvelope", ERROR_ENVELOPE_SCHEMA)

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Workflows", "description": "Workflow, agent output and audit endpoints."},
            {"name": "Governance", "description": "Governance decision submission."},
            {"name": "System", "description": "Health, version and request metrics."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            is_system = any(system_path in path for system_path in SYSTEM_PATHS)
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                responses = method_obj.setdefault("responses", {})
                responses.setdefault("413", GUARD_RESPONSES["413"])
                if not is_system:
                    responses.setdefault("429", GUARD_RESPONSES["429"])

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
