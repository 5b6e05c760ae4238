"""Audit trail for admin actions."""

from __future__ import annotations

import logging
import uuid

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.middleware.request_id import get_client_ip
from src.models.admin_audit_log import AdminAuditLog

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def log_action(
        self,
        admin_id: uuid.UUID,
        action: str,
        target_type: str | None = None,
        target_id: str | uuid.UUID | None = None,
        details: dict | None = None,
        request: Request | None = None,
    ) -> AdminAuditLog:
        """Append an audit row; request metadata comes from RequestIdMiddleware when present."""
        ip_address = None
        user_agent = None
        if request is not None:
            ip_address = getattr(request.state, "client_ip", None) or get_client_ip(request)
            user_agent = getattr(request.state, "user_agent", None) or request.headers.get(
                "user-agent"
            )

        entry = AdminAuditLog(
            admin_id=admin_id,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(
            "Audit: admin %s %s %s %s", admin_id, action, target_type or "-", target_id or "-"
        )
        return entry
