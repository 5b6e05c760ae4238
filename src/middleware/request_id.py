"""Middleware that tags every request with an ID and client metadata."""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


def get_client_ip(request: Request) -> str | None:
    """Return the originating client IP, honouring reverse-proxy headers.

    The first hop of ``X-Forwarded-For`` wins, then ``X-Real-IP``, then the
    socket peer address.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate or propagate a request ID and capture client metadata.

    If the incoming request carries an ``X-Request-ID`` header, that value is
    reused.  Otherwise a new UUID-4 is generated.  The ID, client IP and user
    agent are stored on ``request.state`` (used by the structured error
    envelope and the admin audit log) and the ID is echoed back via the
    ``X-Request-ID`` response header.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.client_ip = get_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
