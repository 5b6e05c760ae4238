"""Provision back-office admin accounts.

Run via: python -m src.seed admin@example.com --name "Admin" [--super-admin]

The password is read from ``--password`` or prompted for interactively.
Re-running for an existing email updates the name, role and password.
"""

import argparse
import getpass
import sys
import uuid

from sqlalchemy import text
from sqlalchemy.orm import Session

from src.database.engine import sync_engine
from src.models.enums import AdminRole
from src.modules.admin.service import hash_password

MIN_PASSWORD_LENGTH = 8


def seed_admin(session: Session, email: str, name: str, password: str, role: AdminRole) -> uuid.UUID:
    row = session.execute(
        text("""
            INSERT INTO admin_users (id, email, password_hash, name, role, is_active)
            VALUES (:id, :email, :password_hash, :name, CAST(:role AS adminrole), true)
            ON CONFLICT (email) DO UPDATE SET
                password_hash = EXCLUDED.password_hash,
                name = EXCLUDED.name,
                role = EXCLUDED.role,
                is_active = true,
                updated_at = now()
            RETURNING id
        """),
        {
            "id": str(uuid.uuid4()),
            "email": email.strip().lower(),
            "password_hash": hash_password(password),
            "name": name,
            "role": role.value,
        },
    ).one()
    return row.id


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or update an admin account.")
    parser.add_argument("email")
    parser.add_argument("--name", default="Admin")
    parser.add_argument("--password", help="Omit to be prompted")
    parser.add_argument("--super-admin", action="store_true", help="Grant the SUPER_ADMIN role")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    password = args.password or getpass.getpass("Password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", file=sys.stderr)
        return 1

    role = AdminRole.SUPER_ADMIN if args.super_admin else AdminRole.ADMIN
    with Session(sync_engine) as session:
        with session.begin():
            admin_id = seed_admin(session, args.email, args.name, password, role)

    print(f"Admin {args.email} ({role.value}) ready: {admin_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
