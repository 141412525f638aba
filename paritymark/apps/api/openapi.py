from __future__ import annotations

from typing import Any

from paritymark.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response(
        "No resolvable caller identity",
        code="unauthenticated",
        message="Permission config.activate denied: unauthenticated",
        details={"permission": "config.activate"},
    ),
    403: _response(
        "Caller lacks the required permission",
        code="missing_permission",
        message="Permission config.activate denied: missing_permission",
        details={"permission": "config.activate"},
    ),
    404: _response(
        "Referenced row not found",
        code="deployment_not_found",
        message="Deployment D1 not found",
        details={"deployment_code": "D1"},
    ),
    422: _response("Validation error", code="validation_error", message="Validation error"),
    500: _response("Internal server error", code="internal_error", message="Internal server error"),
}

LOCKED_RESPONSE: dict[int, dict[str, Any]] = {
    409: _response(
        "Response is locked",
        code="LOCKED",
        message="Response 42 is locked",
        details={"response_id": 42},
    ),
}
