"""Admin account service: credential checks and account provisioning."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import UnauthorizedException
from src.models.admin_user import AdminUser
from src.modules.admin.auth import AdminPrincipal

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def to_principal(admin: AdminUser) -> AdminPrincipal:
    return AdminPrincipal(
        id=admin.id,
        email=admin.email,
        name=admin.name,
        role=getattr(admin.role, "value", admin.role),
    )


class AdminService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def authenticate(self, email: str, password: str) -> AdminUser:
        """Return the active admin matching the credentials.

        Every failure mode raises the same UnauthorizedException so the
        response does not reveal which accounts exist.
        """
        result = await self.db.execute(
            select(AdminUser).where(func.lower(AdminUser.email) == email.strip().lower())
        )
        admin = result.scalar_one_or_none()
        if admin is None or not admin.is_active or not verify_password(password, admin.password_hash):
            logger.warning("Failed admin login for %s", email)
            raise UnauthorizedException("Invalid email or password")

        admin.last_login_at = datetime.now(UTC)
        await self.db.flush()
        logger.info("Admin %s signed in", admin.id)
        return admin
