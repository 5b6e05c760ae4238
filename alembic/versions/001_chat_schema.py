"""Live chat schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Creates: admin_users, admin_audit_log, visitors, visitor_contacts,
         chat_sessions, chat_messages
Types: adminrole, chatstatus, messagerole
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. Enum types ─────────────────────────────────────────────────────
    op.execute("CREATE TYPE adminrole AS ENUM ('ADMIN', 'SUPER_ADMIN');")
    op.execute(
        "CREATE TYPE chatstatus AS ENUM ('ACTIVE', 'ADMIN_ACTIVE', 'ENDED', 'ABANDONED');"
    )
    op.execute("CREATE TYPE messagerole AS ENUM ('USER', 'ASSISTANT', 'ADMIN', 'SYSTEM');")

    # ── 2. Admin accounts and audit trail ─────────────────────────────────
    op.execute("""
        CREATE TABLE admin_users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) NOT NULL UNIQUE,
            password_hash VARCHAR(255) NOT NULL,
            name VARCHAR(255),
            role adminrole NOT NULL DEFAULT 'ADMIN',
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_login_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    op.execute("""
        CREATE TABLE admin_audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            admin_id UUID NOT NULL REFERENCES admin_users(id) ON DELETE CASCADE,
            action VARCHAR(100) NOT NULL,
            target_type VARCHAR(100),
            target_id VARCHAR(100),
            details JSONB,
            ip_address VARCHAR(100),
            user_agent VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_admin_audit_log_admin_id ON admin_audit_log (admin_id);")
    op.execute(
        "CREATE INDEX ix_admin_audit_log_target ON admin_audit_log (target_type, target_id);"
    )
    op.execute("CREATE INDEX ix_admin_audit_log_created_at ON admin_audit_log (created_at);")

    # ── 3. Visitors and captured contacts ─────────────────────────────────
    op.execute("""
        CREATE TABLE visitors (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            visitor_id VARCHAR(100) NOT NULL UNIQUE,
            ip_address VARCHAR(100),
            user_agent VARCHAR(500),
            city VARCHAR(100),
            country VARCHAR(100),
            total_visits INTEGER NOT NULL DEFAULT 1,
            last_visit_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    op.execute("""
        CREATE TABLE visitor_contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            visitor_id UUID NOT NULL UNIQUE REFERENCES visitors(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            contact VARCHAR(255) NOT NULL,
            message TEXT,
            source VARCHAR(50) NOT NULL DEFAULT 'ai_assistant',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    # ── 4. Chat sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE chat_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            visitor_id UUID NOT NULL REFERENCES visitors(id) ON DELETE CASCADE,
            session_token VARCHAR(100) NOT NULL UNIQUE,
            status chatstatus NOT NULL DEFAULT 'ACTIVE',
            current_page VARCHAR(500),
            locale VARCHAR(10) NOT NULL DEFAULT 'ru',
            is_admin_takeover BOOLEAN NOT NULL DEFAULT false,
            admin_takeover_by UUID REFERENCES admin_users(id) ON DELETE SET NULL,
            started_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            last_activity_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            ended_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_chat_sessions_takeover_matches_status
                CHECK (is_admin_takeover = (status = 'ADMIN_ACTIVE'))
        );
    """)
    op.execute("CREATE INDEX ix_chat_sessions_visitor_id ON chat_sessions (visitor_id);")
    op.execute("CREATE INDEX ix_chat_sessions_status ON chat_sessions (status);")
    op.execute(
        "CREATE INDEX ix_chat_sessions_last_activity_at ON chat_sessions (last_activity_at);"
    )

    # ── 5. Chat messages ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE chat_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id UUID NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
            seq BIGINT GENERATED BY DEFAULT AS IDENTITY,
            role messagerole NOT NULL,
            content TEXT NOT NULL,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_chat_messages_session_id_created_at "
        "ON chat_messages (session_id, created_at, seq);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS chat_messages;")
    op.execute("DROP TABLE IF EXISTS chat_sessions;")
    op.execute("DROP TABLE IF EXISTS visitor_contacts;")
    op.execute("DROP TABLE IF EXISTS visitors;")
    op.execute("DROP TABLE IF EXISTS admin_audit_log;")
    op.execute("DROP TABLE IF EXISTS admin_users;")
    op.execute("DROP TYPE IF EXISTS messagerole;")
    op.execute("DROP TYPE IF EXISTS chatstatus;")
    op.execute("DROP TYPE IF EXISTS adminrole;")
