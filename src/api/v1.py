"""Versioned API router collecting the admin and visitor routers."""

from fastapi import APIRouter

from src.modules.admin.router import router as admin_auth_router
from src.modules.chat.router import admin_router as admin_chat_router
from src.modules.chat.router import router as chat_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(admin_auth_router)
v1_router.include_router(admin_chat_router)
v1_router.include_router(chat_router)
