from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docgate.apps.api.response import error_response, get_request_id
from docgate.core.errors import (
    AccessDeniedError,
    DocgateError,
    DomainNotAllowedError,
    DuplicateRequestError,
    FileStoreError,
    InvalidFederatedTokenError,
    RefreshTokenRevokedError,
    RequestAlreadyFinalError,
    ResourceNotAvailableError,
    ResourceNotFoundError,
    StorageUnavailableError,
    UnauthenticatedError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHENTICATED",
    403: "ACCESS_DENIED",
    404: "RESOURCE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

_STATUS_BY_ERROR: dict[type[DocgateError], int] = {
    InvalidFederatedTokenError: 400,
    UnauthenticatedError: 401,
    RefreshTokenRevokedError: 401,
    DomainNotAllowedError: 403,
    AccessDeniedError: 403,
    ResourceNotFoundError: 404,
    ResourceNotAvailableError: 404,
    DuplicateRequestError: 409,
    RequestAlreadyFinalError: 409,
    FileStoreError: 500,
    StorageUnavailableError: 503,
}

# Archived-document errors share the not-found wire shape with genuine misses.
_WIRE_CODE_OVERRIDES: dict[type[DocgateError], str] = {
    ResourceNotAvailableError: ResourceNotFoundError.code,
}


def status_for(exc: DocgateError) -> int:
    for error_type in type(exc).__mro__:
        status_code = _STATUS_BY_ERROR.get(error_type)  # type: ignore[arg-type]
        if status_code is not None:
            return status_code
    return 500


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def docgate_exception_handler(request: Request, exc: DocgateError) -> JSONResponse:
    status_code = status_for(exc)
    code = _WIRE_CODE_OVERRIDES.get(type(exc), exc.code)
    message = exc.message
    headers = None
    if status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    elif status_code == 404:
        message = ResourceNotFoundError.default_message
    if status_code >= 500:
        # System failures: full detail in logs, an opaque message plus request id for the client.
        logger.error(
            "request_failed request_id=%s path=%s code=%s",
            get_request_id(request),
            request.url.path,
            exc.code,
            exc_info=exc,
        )
        message = "Internal server error" if status_code == 500 else StorageUnavailableError.default_message
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Field-level details for malformed input; never retried.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error(
        "unhandled_exception request_id=%s path=%s",
        get_request_id(request),
        request.url.path,
        exc_info=exc,
    )
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
