"""Error taxonomy and normalized JSON error responses."""

import logging
import builtins
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from voicepost.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "unauthenticated"
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class RecordNotFound(NotFoundError):
    """No payment record matches the order for this user."""
    code = "record_not_found"


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InsufficientCreditsError(AppError):
    """Expected business outcome: the user has no credit left to spend."""
    code = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str = "Insufficient credits. Purchase more credits to continue publishing.", **kwargs):
        super().__init__(message, **kwargs)


class SignatureMismatchError(AppError):
    code = "invalid_signature"
    status_code = 400

    def __init__(self, message: str = "Payment signature verification failed", **kwargs):
        super().__init__(message, **kwargs)


class ExternalServiceError(AppError):
    code = "external_service_error"
    status_code = 502


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def error_payload(code: str, message: str, request_id: Optional[str]) -> dict:
    return {
        "success": False,
        "error": message,
        "code": code,
        "request_id": request_id,
    }


def _respond(status_code: int, code: str, message: str, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=error_payload(code, message, rid))
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("voicepost")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    logger = logging.getLogger("voicepost")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, code, message, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    logging.getLogger("voicepost").warning(
        "request.invalid", extra={"request_id": rid, "error_code": "validation_error"}
    )
    return _respond(400, "validation_error", message, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("voicepost")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(500, "internal_error", "Unexpected error", rid)
