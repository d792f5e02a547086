import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..logging_context import set_request_id

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with a correlation id and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(HEADER) or uuid.uuid4().hex
        set_request_id(request_id)
        response = await call_next(request)
        response.headers[HEADER] = request_id
        return response
