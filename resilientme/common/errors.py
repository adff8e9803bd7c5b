"""Error taxonomy shared by every service and its HTTP mapping.

Services raise these instead of `HTTPException` so the same rule (validation,
rate limit, missing target, ...) reads the same whether it is hit by a route,
a Kafka handler or a background loop.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("resilientme")


class PipelineError(Exception):
    """Base error; `code` is the wire name, `status_code` the HTTP mapping."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidArgument(PipelineError):
    code = "invalid-argument"
    status_code = 400


class Unauthenticated(PipelineError):
    code = "unauthenticated"
    status_code = 401


class PermissionDenied(PipelineError):
    code = "permission-denied"
    status_code = 403


class NotFound(PipelineError):
    code = "not-found"
    status_code = 404


class AlreadyExists(PipelineError):
    code = "already-exists"
    status_code = 409


class ResourceExhausted(PipelineError):
    code = "resource-exhausted"
    status_code = 429


class Internal(PipelineError):
    code = "internal"
    status_code = 500


_BY_STATUS: dict[int, type[PipelineError]] = {
    cls.status_code: cls
    for cls in (InvalidArgument, Unauthenticated, PermissionDenied, NotFound, AlreadyExists, ResourceExhausted)
}


def error_for_status(status_code: int, message: str) -> PipelineError:
    """Rebuild the taxonomy error for a downstream service response."""

    if status_code == 422:
        return InvalidArgument(message)
    return _BY_STATUS.get(status_code, Internal)(message)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    else:
        logger.info("request_rejected path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies surface as `invalid-argument` rather than FastAPI's 422."""

    return await pipeline_error_handler(request, InvalidArgument(_first_error(exc)))


def _first_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid")
    return f"{location}: {message}" if location else message


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
