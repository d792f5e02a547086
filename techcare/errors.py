"""
Error taxonomy for the booking core and its HTTP mapping.

Services raise these; the handlers registered in ``register_exception_handlers``
turn them into ``{"detail", "kind", "request_id"}`` JSON bodies.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .logging_context import get_request_id

logger = logging.getLogger(__name__)


class TechCareError(Exception):
    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TechCareError):
    """Malformed or missing input, unknown enum value."""
    status_code = 400
    kind = "validation_error"


class AuthorizationError(TechCareError):
    """Role or ownership mismatch."""
    status_code = 403
    kind = "authorization_error"


class NotFoundError(TechCareError):
    status_code = 404
    kind = "not_found"


class ConflictError(TechCareError):
    """Illegal transition, lost race, or a technician that is no longer free."""
    status_code = 409
    kind = "conflict"


class UpstreamError(TechCareError):
    """Repository or collaborator failure. The message is never shown to clients."""
    status_code = 502
    kind = "upstream_error"
    public_message = "Upstream service unavailable"


def _body(detail: str, kind: str, **extra) -> dict:
    return {"detail": detail, "kind": kind, "request_id": get_request_id(), **extra}


async def techcare_error_handler(request: Request, exc: TechCareError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error(
            "Upstream failure on %s %s: %s",
            request.method, request.url.path, exc.message,
            exc_info=exc.__cause__ or exc,
        )
        return JSONResponse(status_code=exc.status_code, content=_body(exc.public_message, exc.kind))
    return JSONResponse(status_code=exc.status_code, content=_body(exc.message, exc.kind))


HTTP_KINDS = {
    401: "authentication_error",
    403: "authorization_error",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    429: "rate_limited",
}


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework and auth errors (401, 429, unknown routes) in the same envelope."""
    kind = HTTP_KINDS.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(str(exc.detail), kind),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_body("Invalid request", ValidationError.kind, errors=jsonable_encoder(exc.errors())),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_body("Internal server error", TechCareError.kind))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TechCareError, techcare_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
