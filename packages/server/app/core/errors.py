"""
Error taxonomy and the JSON error envelope.

Services raise these directly (they are ``HTTPException`` subclasses), the
exception handlers below render every error as::

    {"error": {"code": "...", "message": "...", "status": 4xx}}
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

log = structlog.get_logger()


class AppError(HTTPException):
    """Base class for domain errors with a stable machine-readable code."""

    status_code_default = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message


class Unauthenticated(AppError):
    status_code_default = 401
    code = "UNAUTHORIZED"


class Forbidden(AppError):
    status_code_default = 403
    code = "FORBIDDEN"


class NotFound(AppError):
    status_code_default = 404
    code = "NOT_FOUND"


class Conflict(AppError):
    status_code_default = 409
    code = "CONFLICT"


class Expired(AppError):
    status_code_default = 410
    code = "EXPIRED"


class ValidationFailed(AppError):
    status_code_default = 400
    code = "BAD_REQUEST"


class TenantIsolationViolation(Exception):
    """A write tried to cross the bound tenant. Raised at flush time."""

    def __init__(self, message: str, *, bound_tenant_id=None, row_tenant_id=None):
        super().__init__(message)
        self.bound_tenant_id = bound_tenant_id
        self.row_tenant_id = row_tenant_id


_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    410: "EXPIRED",
}


def error_body(code: str, message: str, status: int) -> dict:
    return {"error": {"code": code, "message": message, "status": status}}


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code),
        headers=exc.headers,
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_FAILED",
                "message": message,
                "status": 422,
                "details": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                    for err in errors
                ],
            }
        },
    )


async def _isolation_error_handler(
    request: Request, exc: TenantIsolationViolation
) -> JSONResponse:
    log.error(
        "isolation.violation",
        path=request.url.path,
        bound_tenant_id=str(exc.bound_tenant_id),
        row_tenant_id=str(exc.row_tenant_id),
    )
    return JSONResponse(
        status_code=403,
        content=error_body("TENANT_MISMATCH", "Operation not permitted for this organization", 403),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(TenantIsolationViolation, _isolation_error_handler)
