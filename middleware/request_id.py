"""
Request ID middleware for correlating every log line of one request.
"""

import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.logging_config import request_id_var


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a request ID to each request.

    Reuses a client-supplied X-Request-ID (the gateway sends its own on
    callbacks), stores it in request.state and in the logging context
    variable, and echoes it back in the response headers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "no-request-id")
