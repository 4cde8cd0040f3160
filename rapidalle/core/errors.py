"""Error normalization and handlers.

Every error that reaches a client is an AppError with a stable upper-case
code. Extra fields in ``details`` are merged into the error body.
"""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from rapidalle.core.logging import get_request_id


class AppError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = dict(details or {})
        self.headers = dict(headers or {})


class GateError(AppError):
    """Closed base for synchronous generation-gate rejections."""


class ValidationError(GateError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InsufficientCreditsError(GateError):
    code = "NO_CREDITS"
    status_code = 402

    def __init__(self, current_credits: int, required_credits: int, message: str = "Insufficient credits"):
        super().__init__(
            message,
            details={"currentCredits": current_credits, "requiredCredits": required_credits},
        )
        self.current_credits = current_credits
        self.required_credits = required_credits


class RateLimitExceededError(GateError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, reset_time: str, headers: Optional[Dict[str, str]] = None, message: str = "Rate limit exceeded"):
        super().__init__(message, details={"resetTime": reset_time}, headers=headers)
        self.reset_time = reset_time


class UnauthorizedError(AppError):
    code = "AUTH_REQUIRED"
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    code = "AUTH_FORBIDDEN"
    status_code = 403


class NotFoundError(AppError, ValueError):
    code = "NOT_FOUND"
    status_code = 404


class TriggerError(AppError):
    """Raised when a generation run could not be enqueued."""
    code = "TRIGGER_ERROR"
    status_code = 500


class BillingDisabledError(AppError):
    code = "BILLING_DISABLED"
    status_code = 503


class ProviderError(AppError):
    """An upstream provider (LLM, billing) failed during a synchronous call."""
    code = "PROVIDER_ERROR"
    status_code = 502


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error.update(details)
    return {
        "error": error,
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("rapidalle")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    for name, value in exc.headers.items():
        response.headers[name] = value
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("rapidalle")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("rapidalle")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "INTERNAL_ERROR"})
    payload = _error_payload("INTERNAL_ERROR", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "body"
    message = f"Invalid request: {field} {first.get('msg', 'is invalid')}"
    logger = logging.getLogger("rapidalle")
    logger.warning("validation.error", extra={"request_id": rid, "error_code": "VALIDATION_ERROR", "status": 400})
    response = JSONResponse(status_code=400, content=_error_payload("VALIDATION_ERROR", message, rid, {"field": field}))
    response.headers["x-request-id"] = rid
    return response
