"""
Typed JSON error envelope for HTTP routes.

Routes raise `ApiError`; the handler registered in `app.main` renders it as
`{"ok": false, "code": ..., "message": ...}`. Trigger handlers never raise
these; they log and return None instead.
"""
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

log = logging.getLogger(__name__)

# HTTP status codes for known error categories
STATUS_BAD_REQUEST = 400
STATUS_UNAUTHENTICATED = 401
STATUS_FORBIDDEN = 403
STATUS_UNPROCESSABLE = 422
STATUS_NOT_FOUND = 404
STATUS_INTERNAL_ERROR = 500


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str = ""):
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message or code

    def to_dict(self) -> dict:
        return {"ok": False, "code": self.code, "message": self.message}


class PermissionDenied(ApiError):
    """Raised when a client tries to change fields it does not own."""

    def __init__(self, message: str = "permission denied"):
        super().__init__(STATUS_FORBIDDEN, "permission_denied", message)


def unauthenticated(message: str = "Missing or invalid token") -> ApiError:
    return ApiError(STATUS_UNAUTHENTICATED, "unauthenticated", message)


def not_found(message: str = "Not found") -> ApiError:
    return ApiError(STATUS_NOT_FOUND, "not_found", message)


def bad_request(message: str) -> ApiError:
    return ApiError(STATUS_BAD_REQUEST, "invalid_argument", message)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _validation_message(errors: list) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    log.warning("Request validation failed path=%s method=%s errors=%s",
                request.url.path, request.method, [(e.get("loc"), e.get("type")) for e in errors])
    return JSONResponse(
        status_code=STATUS_UNPROCESSABLE,
        content=ApiError(STATUS_UNPROCESSABLE, "invalid_argument", _validation_message(errors)).to_dict(),
    )


_HTTP_CODES = {
    STATUS_BAD_REQUEST: "invalid_argument",
    STATUS_UNAUTHENTICATED: "unauthenticated",
    STATUS_FORBIDDEN: "forbidden",
    STATUS_NOT_FOUND: "not_found",
    405: "method_not_allowed",
}


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown path, wrong method) in the same envelope."""
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else code
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiError(exc.status_code, code, message).to_dict(),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=STATUS_INTERNAL_ERROR,
        content={"ok": False, "code": "internal", "message": "Internal error"},
    )
