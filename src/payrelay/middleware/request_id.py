"""Request ID middleware — one id per request, on every log line.

Learn: The payment processor sends its own delivery id in X-Request-ID
on some integrations; when it does we reuse it, so our logs line up with
theirs. Otherwise a UUID is generated. The id is bound into structlog's
contextvars and echoed back in the response header.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(HEADER) or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            http_request_id=request_id,
            path=request.url.path,
        )

        response: Response = await call_next(request)
        response.headers[HEADER] = request_id
        return response
