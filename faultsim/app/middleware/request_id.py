"""Request ID middleware.

Resolves the request identifier once per request so that log records and
the ``x-request-id`` response header agree.
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to attach a request ID to every request.

    The request ID is:
    1. Extracted from the X-Request-ID header if present
    2. Generated as UUID if not present
    3. Added to request.state for access in endpoints
    4. Returned in the X-Request-ID response header, unless the endpoint
       already set it or the request crashed on purpose
    """

    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self.header_name)
        if not request_id:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        request.state.crashed = False

        response = await call_next(request)

        # A simulated crash fails before any header is attached
        if not getattr(request.state, "crashed", False):
            if self.header_name not in response.headers:
                response.headers[self.header_name] = request_id

        return response


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", "unknown")
