"""
Error types and the JSON error envelope.

Store-level failures are raised as ``OrgUsersError`` subclasses. Handlers
translate them into ``ApiError``, which renders as ``{"message": ...}``
with the chosen status code. The wrapped cause of a 5xx is logged and never
sent to the caller. Database and unexpected errors render as a generic 500.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

log = structlog.get_logger()

INTERNAL_ERROR_MESSAGE = "Internal server error"


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class OrgUsersError(Exception):
    """Base for org membership store errors."""

    message = "org users error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class UserNotFoundError(OrgUsersError):
    message = "User not found"


class OrgUserNotFoundError(OrgUsersError):
    message = "Cannot find the organization user"


class OrgUserAlreadyAddedError(OrgUsersError):
    message = "User is already added to organization"


class OrgNotFoundError(OrgUsersError):
    message = "Organization not found"


class LastOrgAdminError(OrgUsersError):
    message = "Cannot remove last organization admin"


# ---------------------------------------------------------------------------
# HTTP errors
# ---------------------------------------------------------------------------

class ApiError(Exception):
    """An error response: status code, public message and optional cause."""

    def __init__(
        self,
        status_code: int,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.cause = cause


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error(
            "request.failed",
            status=exc.status_code,
            message=exc.message,
            error=repr(exc.cause) if exc.cause else None,
        )
    elif exc.cause is not None:
        log.info("request.rejected", status=exc.status_code, message=exc.message, error=str(exc.cause))
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.info("request.bad_data", path=request.url.path, errors=exc.errors())
    return JSONResponse(status_code=400, content={"message": "bad request data"})


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("request.unhandled", path=request.url.path, error=repr(exc))
    return JSONResponse(status_code=500, content={"message": INTERNAL_ERROR_MESSAGE})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, _unhandled_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
