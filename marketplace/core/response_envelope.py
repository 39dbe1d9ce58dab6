from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted", 207: "multi_status"}
ENVELOPE_KEYS = ("code", "message", "data", "details")
_SKIPPED_HEADERS = frozenset({"content-length", "content-type"})


def envelope(data: Any, status_code: int, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = "Success"
    body = {"code": SUCCESS_CODES.get(status_code, "ok"), "message": phrase, "data": data, "details": {}}
    body.update({key: value for key, value in (overrides or {}).items() if key in ENVELOPE_KEYS})
    return body


def _already_wrapped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and {"code", "message"} <= payload.keys()
        and ("data" in payload or "details" in payload)
    )


def _with_headers_of(original: Response, replacement: Response) -> Response:
    for name, value in original.headers.items():
        if name.lower() not in _SKIPPED_HEADERS:
            replacement.headers[name] = value
    return replacement


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wraps 2xx JSON bodies in the ``{code, message, data, details}`` envelope.

    Routes may return a pre-built envelope (e.g. to pick a specific ``code``);
    missing keys are filled in and the body is otherwise passed through.
    """

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)
        status_code = response.status_code
        if not 200 <= status_code < 300:
            return response
        if status_code == 204:
            return _with_headers_of(response, JSONResponse(envelope(None, 200)))

        media_type = response.headers.get("content-type", "")
        if not media_type.startswith("application/json"):
            return response

        raw = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            passthrough = Response(content=raw, status_code=status_code, media_type=media_type)
            return _with_headers_of(response, passthrough)

        if _already_wrapped(payload):
            body = envelope(None, status_code, payload)
        else:
            body = envelope(payload, status_code)
        return _with_headers_of(response, JSONResponse(body, status_code=status_code))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
