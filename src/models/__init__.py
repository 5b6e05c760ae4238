# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.admin_audit_log import AdminAuditLog
from src.models.admin_user import AdminUser
from src.models.chat_message import ChatMessage
from src.models.chat_session import ChatSession
from src.models.enums import AdminRole, ChatStatus, MessageRole
from src.models.visitor import Visitor, VisitorContact
