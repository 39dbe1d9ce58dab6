from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Mapping

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace.core.exceptions import (
    MarketplaceError,
    SubmissionValidationError,
    WebhookConfigurationError,
)

logger = logging.getLogger(__name__)

ERROR_CODES_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "unprocessable_entity",
    429: "rate_limited",
    502: "bad_gateway",
}

# Keys an HTTPException detail dict may use for its human readable text.
_MESSAGE_KEYS = ("message", "detail", "error")

# Engine exceptions that surface as client-facing errors.
DOMAIN_ERRORS: dict[type[MarketplaceError], tuple[int, str]] = {
    SubmissionValidationError: (400, "invalid_submission"),
    WebhookConfigurationError: (500, "webhook_not_configured"),
}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {"errors": value}
    return {"detail": value if isinstance(value, str) else str(value)}


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    *,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render an error in the same envelope shape successful responses use."""
    body = {"code": code, "message": message, "data": None, "details": _as_details(details)}
    response = JSONResponse(status_code=status_code, content=jsonable_encoder(body))
    if headers:
        response.headers.update(headers)
    return response


def _unpack_detail(detail: Any, status_code: int) -> tuple[str, str, dict]:
    code = ERROR_CODES_BY_STATUS.get(status_code, "http_error")
    if isinstance(detail, str):
        return code, detail, {"detail": detail}
    if not isinstance(detail, dict):
        return code, _phrase(status_code), _as_details(detail)

    text = next((detail[key] for key in _MESSAGE_KEYS if detail.get(key)), None)
    message = text or _phrase(status_code)
    if "details" in detail:
        extra = _as_details(detail["details"])
    else:
        extra = {k: v for k, v in detail.items() if k != "code" and k not in _MESSAGE_KEYS}
        extra = extra or {"detail": message}
    return detail.get("code") or code, message, extra


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _unpack_detail(exc.detail, exc.status_code)
    return error_response(exc.status_code, code, message, details, headers=exc.headers)


def _describe_validation_error(error: Mapping[str, Any]) -> str:
    text = str(error.get("msg") or "Validation failed")
    path = [str(part) for part in error.get("loc") or () if part not in ("body", "query", "path")]
    return f"{'.'.join(path)}: {text}" if path else text


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = _describe_validation_error(errors[0] or {}) if errors else "Validation failed"
    return error_response(422, "validation_error", message, {"errors": errors})


async def domain_exception_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code, code = DOMAIN_ERRORS.get(type(exc), (500, "internal_server_error"))
    if isinstance(exc, SubmissionValidationError):
        return error_response(
            status_code, code, exc.message, {"field": exc.field} if exc.field else None
        )
    if isinstance(exc, WebhookConfigurationError):
        # The lender type is logged but never echoed to the caller.
        logger.error("Webhook secret missing: %s", exc)
        return error_response(status_code, code, "Webhook secret not configured")
    return error_response(status_code, code, str(exc) or _phrase(status_code))


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return error_response(
        429,
        "rate_limited",
        _phrase(429),
        getattr(exc, "detail", None),
        headers=headers if isinstance(headers, dict) else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    for exc_class in DOMAIN_ERRORS:
        app.add_exception_handler(exc_class, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
