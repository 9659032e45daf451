#!/usr/bin/env python3
"""
Create (or promote) an admin account.

Run with:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Str0ng!Pass' python -m scripts.create_admin
    python -m scripts.create_admin --email admin@example.com --password 'Str0ng!Pass' --name Admin
"""

import argparse
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import SessionLocal
from app.core.exceptions import KeywardException
from app.core.sanitization import normalize_email
from app.models import ROLE_ADMIN
from app.services.auth_service import AuthService


def create_admin(email: str, password: str, name: str) -> str:
    """Create a verified admin, or promote an existing account. Returns the status."""
    db = SessionLocal()
    try:
        existing = AuthService.get_user_by_email(db, normalize_email(email))
        if existing:
            if existing.role == ROLE_ADMIN:
                print(f"User {existing.email} is already an admin (id: {existing.id})")
                return "already_admin"
            existing.role = ROLE_ADMIN
            existing.email_verified = True
            db.commit()
            print(f"Promoted {existing.email} to admin (id: {existing.id})")
            return "promoted"

        user = AuthService.create_user(
            db,
            email=email,
            password=password,
            name=name,
            role=ROLE_ADMIN,
            email_verified=True,
        )
        print(f"Created admin {user.email} (id: {user.id})")
        return "created"
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))
    parser.add_argument("--name", default=os.getenv("ADMIN_NAME", "Administrator"))
    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("--email and --password (or ADMIN_EMAIL / ADMIN_PASSWORD) are required")

    try:
        create_admin(args.email, args.password, args.name)
    except KeywardException as e:
        print(f"Error: {e.detail}", file=sys.stderr)
        reasons = getattr(e, "reasons", None)
        for reason in reasons or []:
            print(f"  - {reason}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
