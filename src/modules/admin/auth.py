"""Admin session authentication for FastAPI.

Admins sign in once and receive a signed JWT in an HTTP-only cookie.  The
``get_current_admin`` dependency validates that cookie (or a Bearer token,
for API clients) and exposes the signed-in admin as an ``AdminPrincipal``.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config import settings
from src.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

# Bearer fallback for non-browser clients; the cookie is checked first
_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AdminPrincipal:
    """The authenticated admin extracted from a session token."""

    id: uuid.UUID
    email: str
    name: str | None = None
    role: str = "ADMIN"

    @property
    def display_name(self) -> str:
        return self.name or self.email


def create_session_token(admin: AdminPrincipal, expires_in: timedelta | None = None) -> str:
    """Sign a session token for ``admin``."""
    expire = datetime.now(UTC) + (expires_in or timedelta(hours=settings.admin_session_hours))
    claims = {
        "sub": str(admin.id),
        "email": admin.email,
        "name": admin.name,
        "role": admin.role,
        "exp": expire,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("Admin session token rejected: %s", exc)
        raise UnauthorizedException("Invalid or expired session") from exc


def principal_from_token(token: str) -> AdminPrincipal:
    payload = _decode_token(token)
    try:
        return AdminPrincipal(
            id=uuid.UUID(payload["sub"]),
            email=payload["email"],
            name=payload.get("name"),
            role=payload.get("role", "ADMIN"),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Session is missing required claims") from exc


async def get_current_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AdminPrincipal:
    """FastAPI dependency that returns the signed-in admin or raises 401."""
    token = request.cookies.get(settings.admin_session_cookie)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        raise UnauthorizedException("Authentication required")

    admin = principal_from_token(token)
    request.state.admin = admin
    return admin
