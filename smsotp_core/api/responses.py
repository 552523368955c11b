"""
Response Envelope
=================
JSON envelope and HTTP status mapping of the request boundary.

Success: {"success": true, "message": ..., "data": {...}}
Failure: {"success": false, "error": {"code": ..., "message": ...}}
"""

import math
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from ..errors import (
    AuthFlowError,
    DebugAccessError,
    FailureReason,
    InputError,
    InternalError,
    InvalidCredentialsError,
    RateLimitExceeded,
    SecurityViolation,
    ValidationFailure,
)

logger = structlog.get_logger(__name__)

STATUS_BY_REASON = {
    FailureReason.SESSION_NOT_FOUND: 404,
    FailureReason.DEBUG_OTP_NOT_FOUND: 404,
    FailureReason.DEBUG_DISABLED: 404,
    FailureReason.SESSION_EXPIRED: 403,
    FailureReason.SESSION_LOCKED: 403,
    FailureReason.SESSION_ALREADY_VERIFIED: 403,
    FailureReason.INVALID_SIGNATURE: 403,
    FailureReason.DEBUG_FORBIDDEN: 403,
    FailureReason.NO_OTP_FOUND: 401,
    FailureReason.OTP_EXPIRED: 401,
    FailureReason.OTP_ALREADY_USED: 401,
    FailureReason.INVALID_OTP: 401,
}

STATUS_BY_ERROR = (
    (InputError, 400),
    (InvalidCredentialsError, 401),
    (SecurityViolation, 403),
    (RateLimitExceeded, 429),
    (ValidationFailure, 403),
    (DebugAccessError, 403),
    (InternalError, 500),
)


def status_for(error: AuthFlowError) -> int:
    """HTTP status code for a flow error."""
    if error.reason in STATUS_BY_REASON:
        return STATUS_BY_REASON[error.reason]
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


def success_response(data: Dict[str, Any], message: str = "Success") -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": message, "data": data},
    )


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    details = exc.details if isinstance(exc.details, dict) else None

    if isinstance(exc, RateLimitExceeded):
        retry_after = max(int(math.ceil(exc.retry_after)), 1)
        headers = {"Retry-After": str(retry_after)}
        details = {"resetAt": exc.reset_at, "retryAfter": retry_after}

    logger.info(
        "Request rejected",
        path=request.url.path,
        status=status_code,
        reason=exc.reason.value,
    )
    return error_response(status_code, exc.reason.value, exc.message, details, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
    logger.info("Malformed request body", path=request.url.path, fields=fields)
    return error_response(
        400,
        FailureReason.INVALID_REQUEST.value,
        "Invalid request body",
        {"fields": fields},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )
    return error_response(500, FailureReason.INTERNAL_ERROR.value, InternalError.default_message)
