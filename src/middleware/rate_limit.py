"""Shared slowapi limiter keyed by the visitor's originating IP address.

Limits are declared per route with ``@limiter.limit``; there is no global
default because ``SlowAPIMiddleware`` is not installed.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_ip_key(request: Request) -> str:
    """Prefer the proxy-aware IP resolved by ``RequestIdMiddleware``."""
    return getattr(request.state, "client_ip", None) or get_remote_address(request)


limiter = Limiter(key_func=client_ip_key)
