from __future__ import annotations

from typing import Any

from docgate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthenticated", code="UNAUTHENTICATED", message="Authentication required"),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
    503: _response(
        "Storage unavailable",
        code="SERVICE_UNAVAILABLE",
        message="Service temporarily unavailable",
    ),
}

NOT_FOUND_RESPONSE = {404: _response("Not found", code="RESOURCE_NOT_FOUND", message="Resource not found")}
FORBIDDEN_RESPONSE = {403: _response("Forbidden", code="ACCESS_DENIED", message="Access denied")}
CONFLICT_RESPONSE = {
    409: _response(
        "Conflict",
        code="DUPLICATE_REQUEST",
        message="An open access request already exists for this document",
    )
}
INVALID_TOKEN_RESPONSE = {
    400: _response("Invalid federated credential", code="INVALID_TOKEN", message="Invalid federated credential")
}
