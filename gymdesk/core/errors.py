"""Error normalization and handlers.

Every error response has the shape
``{"error": <message>, "code": <CODE>?, "request_id": <rid>, ...extra}``.
``code`` is only present for conditions a client is expected to branch on.
"""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from gymdesk.core.logging import get_request_id


class AppError(Exception):
    code: Optional[str] = None
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.extra = extra or {}


class ValidationError(AppError, ValueError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    status_code = 403


class NotFoundError(AppError, ValueError):
    status_code = 404


class BusinessRuleError(AppError):
    """A request that is well-formed but breaks a gym rule."""
    status_code = 400


class SubscriptionRequiredError(BusinessRuleError):
    code = "SUBSCRIPTION_REQUIRED"
    status_code = 403


class CheckInLimitError(BusinessRuleError):
    code = "CHECKIN_LIMIT_REACHED"
    status_code = 403


class ClassLimitError(BusinessRuleError):
    code = "CLASS_LIMIT_REACHED"
    status_code = 403


class ClassFullError(BusinessRuleError):
    code = "CLASS_FULL"
    status_code = 400


class AlreadyBookedError(BusinessRuleError):
    status_code = 400


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(message: str, request_id: str, code: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> dict:
    payload: Dict[str, Any] = {"error": message}
    if code:
        payload["code"] = code
    payload["request_id"] = request_id
    if extra:
        for key, value in extra.items():
            payload.setdefault(key, value)
    return payload


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.message, rid, exc.code, exc.extra)
    logger = logging.getLogger("gymdesk")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if isinstance(exc.detail, dict):
        message = str(exc.detail.get("error") or exc.detail.get("message") or "HTTP error")
        code = exc.detail.get("code")
    else:
        message = exc.detail if exc.detail else "HTTP error"
        code = None
    payload = _error_payload(message, rid, code)
    logger = logging.getLogger("gymdesk")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else "Invalid request body"
    logger = logging.getLogger("gymdesk")
    logger.warning("request.invalid", extra={"request_id": rid, "status": 400, "field": field})
    response = JSONResponse(status_code=400, content=_error_payload(message, rid))
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("gymdesk")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
