import re
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core import clock
from app.core.exceptions import WeakPasswordError
from app.core.security import get_password_hash, verify_password, verify_dummy_password
from app.models import Credential


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
SPECIAL_CHARACTERS = "@$!%*?&#"

PASSWORD_RULES = [
    (lambda p: len(p) >= MIN_PASSWORD_LENGTH, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"),
    (lambda p: len(p) <= MAX_PASSWORD_LENGTH, f"Password must be at most {MAX_PASSWORD_LENGTH} characters"),
    (lambda p: any(c.islower() for c in p), "Password must contain at least one lowercase letter"),
    (lambda p: any(c.isupper() for c in p), "Password must contain at least one uppercase letter"),
    (lambda p: any(c.isdigit() for c in p), "Password must contain at least one number"),
    (
        lambda p: re.search(f"[{re.escape(SPECIAL_CHARACTERS)}]", p) is not None,
        f"Password must contain at least one special character ({SPECIAL_CHARACTERS})",
    ),
]


def password_policy_violations(password: str) -> list[str]:
    """Return every rule the password breaks (empty list if it is acceptable)."""
    return [message for rule, message in PASSWORD_RULES if not rule(password)]


def validate_password_strength(password: str) -> None:
    """Validate password meets the complexity policy. Raises WeakPasswordError if weak."""
    violations = password_policy_violations(password)
    if violations:
        raise WeakPasswordError(violations)


class CredentialStore:
    """Password hashes, one row per user."""

    @staticmethod
    def get_hash(db: Session, user_id: UUID) -> Optional[str]:
        return db.query(Credential.password_hash).filter(
            Credential.user_id == user_id
        ).scalar()

    @staticmethod
    def set_password(db: Session, user_id: UUID, password: str) -> None:
        """Hash and store a password, replacing any previous hash. Caller commits."""
        password_hash = get_password_hash(password)
        now = clock.utcnow()
        updated = db.query(Credential).filter(Credential.user_id == user_id).update(
            {Credential.password_hash: password_hash, Credential.updated_at: now},
            synchronize_session=False,
        )
        if not updated:
            db.add(Credential(user_id=user_id, password_hash=password_hash, updated_at=now))
            db.flush()

    @staticmethod
    def check_password(db: Session, user_id: Optional[UUID], password: str) -> bool:
        """
        Verify a password for a user. Unknown users still cost one bcrypt
        verification so response time does not reveal account existence.
        """
        password_hash = CredentialStore.get_hash(db, user_id) if user_id else None
        if not password_hash:
            verify_dummy_password(password)
            return False
        return verify_password(password, password_hash)
