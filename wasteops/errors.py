"""Error taxonomy shared by the guards, services and API handlers.

Every failure that reaches the HTTP boundary is a :class:`ServiceError`
subclass.  The exception handlers installed by :func:`install_error_handlers`
render it as the standard envelope::

    {"success": false,
     "errors": [{"code": 401, "source": "auth.bearer",
                 "title": "Unauthorized", "message": "..."}]}
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wasteops.schemas.common import ResponseError, ResponseForm

logger = logging.getLogger("wasteops.errors")


class ServiceError(Exception):
    """Base class: carries the HTTP status, a short title and a message."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    title: str = "Internal Server Error"

    def __init__(self, message: str | None = None, *, source: str | None = None) -> None:
        self.message = message or self.title
        self.source = source
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_response_error(self) -> ResponseError:
        return ResponseError(
            code=self.status_code,
            source=self.source,
            title=self.title,
            message=self.message,
        )


class Unauthenticated(ServiceError):
    """Missing, malformed, invalid or expired credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    title = "Unauthorized"


class Forbidden(ServiceError):
    """Valid identity, insufficient privilege (role, level or permission)."""

    status_code = status.HTTP_403_FORBIDDEN
    title = "Forbidden"


class InvalidRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    title = "Bad Request"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    title = "Not Found"


class Conflict(ServiceError):
    """The write would duplicate an existing unique row."""

    status_code = status.HTTP_409_CONFLICT
    title = "Conflict"


class InternalError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Internal Server Error"


class TooManyRequests(ServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    title = "Too Many Requests"


def error_response(exc: ServiceError) -> JSONResponse:
    body = ResponseForm(success=False, errors=[exc.to_response_error()])
    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return error_response(InvalidRequest("; ".join(parts) or "invalid request body", source="validation"))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(InternalError())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
