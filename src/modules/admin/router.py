"""Admin authentication router: login, logout and the current admin."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database.session import get_db
from src.modules.admin.audit_service import AuditService
from src.modules.admin.auth import AdminPrincipal, create_session_token, get_current_admin
from src.modules.admin.schemas import AdminProfileResponse, LoginRequest
from src.modules.admin.service import AdminService, to_principal

router = APIRouter(prefix="/admin/auth", tags=["admin-auth"])


@router.post("/login", response_model=AdminProfileResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Verify credentials and set the admin session cookie."""
    svc = AdminService(db)
    admin = await svc.authenticate(body.email, body.password)
    principal = to_principal(admin)

    response.set_cookie(
        key=settings.admin_session_cookie,
        value=create_session_token(principal),
        max_age=settings.admin_session_hours * 3600,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    await AuditService(db).log_action(admin_id=principal.id, action="login", request=request)
    return AdminProfileResponse(**principal.__dict__)


@router.post("/logout", status_code=204)
async def logout() -> Response:
    """Clear the admin session cookie."""
    response = Response(status_code=204)
    response.delete_cookie(settings.admin_session_cookie, path="/")
    return response


@router.get("/me", response_model=AdminProfileResponse)
async def me(admin: AdminPrincipal = Depends(get_current_admin)):
    """Return the signed-in admin."""
    return AdminProfileResponse(**admin.__dict__)
