"""Live chat routers: admin console (takeover, replies, push stream) and visitor widget."""

import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database.session import get_db
from src.exceptions import BadRequestException
from src.middleware.rate_limit import limiter
from src.models.enums import ChatStatus
from src.modules.admin.audit_service import AuditService
from src.modules.admin.auth import AdminPrincipal, get_current_admin
from src.modules.chat.assistant import AssistantService
from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.notifications import TelegramNotifier
from src.modules.chat.constants import (
    ALL_CHANNEL,
    AUDIT_CHAT_END,
    AUDIT_CHAT_RELEASE,
    AUDIT_CHAT_TAKEOVER,
    AUDIT_TARGET_CHAT_SESSION,
    SSE_RESPONSE_HEADERS,
    VISITOR_EVENT_TYPES,
)
from src.modules.chat.dependencies import get_broadcaster, get_notifier
from src.modules.chat.schemas import (
    AdminMessageCreate,
    AdminMessageResponse,
    ChatSessionDetail,
    ChatSessionListResponse,
    ChatSessionResponse,
    ChatSessionSummary,
    MessageResponse,
    SuccessResponse,
    TakeoverResponse,
    VisitorHistoryResponse,
    VisitorMessageCreate,
    VisitorMessageResponse,
)
from src.modules.chat.service import ChatService
from src.modules.chat.sse import event_stream

admin_router = APIRouter(prefix="/admin/chats", tags=["admin-chats"])
router = APIRouter(prefix="/chat", tags=["chat"])


def _sse_response(stream) -> StreamingResponse:
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_RESPONSE_HEADERS)


# ---------------------------------------------------------------------------
# Admin console
# ---------------------------------------------------------------------------


@admin_router.get("", response_model=ChatSessionListResponse)
async def list_chats(
    active_only: bool = Query(False, alias="active"),
    status: ChatStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """List chat sessions by most recent activity."""
    svc = ChatService(db)
    overviews, total = await svc.list_sessions(
        active_only=active_only, status=status, limit=limit, offset=offset
    )
    sessions = []
    for overview in overviews:
        summary = ChatSessionSummary.model_validate(overview.session)
        summary.message_count = overview.message_count
        if overview.last_message is not None:
            summary.last_message = MessageResponse.model_validate(overview.last_message)
        sessions.append(summary)
    return ChatSessionListResponse(sessions=sessions, total=total)


@admin_router.get("/sse")
async def admin_stream(
    request: Request,
    session_id: uuid.UUID | None = Query(None, alias="sessionId"),
    admin: AdminPrincipal = Depends(get_current_admin),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Live event stream for one session, or every session when ``sessionId`` is omitted."""
    channel = str(session_id) if session_id is not None else ALL_CHANNEL
    return _sse_response(event_stream(request, broadcaster, channel))


@admin_router.get("/{session_id}", response_model=ChatSessionDetail)
async def get_chat(
    session_id: uuid.UUID,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Get a session with its visitor, contact and full message history."""
    svc = ChatService(db)
    session, messages = await svc.get_session_with_history(session_id)
    detail = ChatSessionDetail.model_validate(session)
    detail.messages = [MessageResponse.model_validate(m) for m in messages]
    return detail


@admin_router.post("/{session_id}/takeover", response_model=TakeoverResponse)
async def takeover_chat(
    session_id: uuid.UUID,
    request: Request,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Take control of a conversation; the AI stops replying."""
    svc = ChatService(db, broadcaster)
    session = await svc.takeover_session(session_id, admin)
    await AuditService(db).log_action(
        admin_id=admin.id,
        action=AUDIT_CHAT_TAKEOVER,
        target_type=AUDIT_TARGET_CHAT_SESSION,
        target_id=session.id,
        details={"sessionToken": session.session_token},
        request=request,
    )
    return TakeoverResponse(session=ChatSessionResponse.model_validate(session))


@admin_router.delete("/{session_id}/takeover", response_model=TakeoverResponse)
async def release_chat(
    session_id: uuid.UUID,
    request: Request,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Hand the conversation back to the AI assistant."""
    svc = ChatService(db, broadcaster)
    session = await svc.release_session(session_id, admin)
    await AuditService(db).log_action(
        admin_id=admin.id,
        action=AUDIT_CHAT_RELEASE,
        target_type=AUDIT_TARGET_CHAT_SESSION,
        target_id=session.id,
        request=request,
    )
    return TakeoverResponse(session=ChatSessionResponse.model_validate(session))


@admin_router.post(
    "/{session_id}/messages", response_model=AdminMessageResponse, status_code=201
)
async def send_admin_message(
    session_id: uuid.UUID,
    body: AdminMessageCreate,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Reply to the visitor as the admin; requires an active takeover."""
    svc = ChatService(db, broadcaster)
    message = await svc.send_admin_message(session_id, body.content, admin)
    return AdminMessageResponse(message=MessageResponse.model_validate(message))


@admin_router.delete("/{session_id}", response_model=SuccessResponse)
async def end_chat(
    session_id: uuid.UUID,
    request: Request,
    admin: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Close a conversation for good."""
    svc = ChatService(db, broadcaster)
    session = await svc.end_session(session_id, admin)
    await AuditService(db).log_action(
        admin_id=admin.id,
        action=AUDIT_CHAT_END,
        target_type=AUDIT_TARGET_CHAT_SESSION,
        target_id=session.id,
        request=request,
    )
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Visitor widget
# ---------------------------------------------------------------------------


@router.post("/messages", response_model=VisitorMessageResponse)
@limiter.limit(settings.visitor_message_rate_limit)
async def post_visitor_message(
    request: Request,
    body: VisitorMessageCreate,
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    notifier: TelegramNotifier | None = Depends(get_notifier),
):
    """Store a visitor message and, unless an admin holds the chat, answer with the AI."""
    svc = ChatService(db, broadcaster, notifier)
    result = await svc.record_visitor_message(
        visitor_id=body.visitor_id,
        session_token=body.session_token,
        content=body.content,
        current_page=body.current_page,
        locale=body.locale,
        city=body.city,
        country=body.country,
        ip_address=getattr(request.state, "client_ip", None),
        user_agent=getattr(request.state, "user_agent", None),
    )

    response = VisitorMessageResponse(
        session_token=result.session.session_token,
        admin_takeover=result.admin_takeover,
        message=MessageResponse.model_validate(result.message),
    )
    if result.admin_takeover:
        return response

    reply = await svc.respond_as_assistant(result.session, AssistantService(), city=body.city)
    if reply.message is not None:
        response.reply = MessageResponse.model_validate(reply.message)
    else:
        # Taken over while the completion was in flight
        response.admin_takeover = result.session.is_admin_takeover
    response.function_calls = reply.function_calls
    return response


@router.get("/sse")
async def visitor_stream(
    request: Request,
    session_token: str | None = Query(None, alias="sessionToken"),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Live stream for the visitor widget, limited to visitor-facing events."""
    if not session_token or session_token == ALL_CHANNEL:
        raise BadRequestException("A valid sessionToken query parameter is required")
    return _sse_response(
        event_stream(request, broadcaster, session_token, allowed_types=VISITOR_EVENT_TYPES)
    )


@router.get("/history", response_model=VisitorHistoryResponse)
async def visitor_history(
    session_token: str = Query(..., alias="sessionToken", min_length=1, max_length=100),
    limit: int = Query(settings.chat_history_limit, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Recent messages for the visitor widget after a reload."""
    svc = ChatService(db)
    session, messages = await svc.get_visitor_history(session_token, limit)
    return VisitorHistoryResponse(
        session_token=session.session_token,
        status=session.status,
        is_admin_takeover=session.is_admin_takeover,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )
