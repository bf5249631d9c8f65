from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from edugate.apps.api.response import error_response, is_versioned_request
from edugate.core import errors as domain_errors


logger = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "Access denied. Please contact your administrator."

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    500: "INTERNAL_ERROR",
}

# (status, code, public message); None keeps the exception's own message.
_DOMAIN_ERRORS: tuple[tuple[type[domain_errors.EdugateError], int, str, str | None], ...] = (
    (
        domain_errors.WebhookConfigurationError,
        500,
        "WEBHOOK_NOT_CONFIGURED",
        "Webhook endpoint is not configured",
    ),
    (domain_errors.InvalidSchemaName, 500, "TENANT_CONTEXT_ERROR", "Tenant context unavailable"),
    (domain_errors.TenantContextError, 500, "TENANT_CONTEXT_ERROR", "Tenant context unavailable"),
    (domain_errors.ConfigurationError, 500, "CONFIGURATION_ERROR", "Service is misconfigured"),
    (domain_errors.TenantNotFound, 404, "TENANT_NOT_FOUND", "School not found"),
    (domain_errors.TenantMismatch, 403, "AUTH_FORBIDDEN", FORBIDDEN_MESSAGE),
    (domain_errors.AssignmentForbidden, 403, "AUTH_FORBIDDEN", FORBIDDEN_MESSAGE),
    (domain_errors.TenantInactive, 403, "TENANT_INACTIVE", None),
    (domain_errors.UserInactive, 403, "USER_INACTIVE", None),
    (domain_errors.AuthenticationError, 401, "AUTH_UNAUTHORIZED", None),
    (domain_errors.AssignmentBadRequest, 400, "BAD_REQUEST", None),
    (domain_errors.InvalidOverride, 400, "OVERRIDE_INVALID", None),
    (domain_errors.ActiveOverrideExists, 409, "OVERRIDE_ACTIVE_EXISTS", None),
    (domain_errors.OverrideAlreadyRevoked, 409, "OVERRIDE_ALREADY_REVOKED", None),
    (domain_errors.OverrideNotFound, 404, "OVERRIDE_NOT_FOUND", None),
    (domain_errors.TenantConflict, 409, "TENANT_CONFLICT", None),
    (
        domain_errors.WebhookSignatureError,
        400,
        "WEBHOOK_SIGNATURE_INVALID",
        "Invalid webhook signature",
    ),
    (domain_errors.WebhookPayloadError, 400, "WEBHOOK_PAYLOAD_INVALID", None),
)


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


def to_http_exception(exc: domain_errors.EdugateError) -> HTTPException:
    # Translate typed domain failures into the public status/code/message triple.
    for error_type, status_code, code, public_message in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            message = public_message or exc.message or "Request failed"
            headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
            return HTTPException(
                status_code=status_code,
                detail={"code": code, "message": message},
                headers=headers,
            )
    return HTTPException(
        status_code=500,
        detail={"code": "INTERNAL_ERROR", "message": "Internal server error"},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize HTTP exceptions into the shared error envelope for v1 routes.
    if not is_versioned_request(request):
        return JSONResponse(
            content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers
        )
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(
    request: Request, exc: domain_errors.EdugateError
) -> JSONResponse:
    http_exc = to_http_exception(exc)
    if http_exc.status_code >= 500:
        logger.error(
            "request_failed path=%s error=%s",
            request.url.path,
            type(exc).__name__,
            exc_info=exc,
        )
    return await http_exception_handler(request, http_exc)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": jsonable_encoder(exc.errors())}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # The envelope never carries the stack trace; the log does.
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
