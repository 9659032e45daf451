from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AlreadyExistsError,
    InvalidCredentialsError,
    ServiceUnavailableError,
    ValidationError,
)
from app.core.sanitization import sanitize_email, sanitize_name, validate_email
from app.models import User, ROLE_CLIENT
from app.services.credential_store import CredentialStore, validate_password_strength
from app.services.notifier import Notifier
from app.services.recovery_service import RecoveryService
from app.services.session_service import SessionManager

logger = logging.getLogger(__name__)


class AuthService:
    """Service for account registration and password changes."""

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get a user by email address."""
        return db.query(User).filter(User.email == email).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: UUID) -> Optional[User]:
        """Get a user by ID."""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def create_user(
        db: Session,
        email: str,
        password: str,
        name: str,
        role: str = ROLE_CLIENT,
        email_verified: bool = False,
    ) -> User:
        """
        Create a user with a password credential and commit.

        Raises ValidationError for a malformed email or empty name,
        WeakPasswordError for a password that fails the policy and
        AlreadyExistsError if the email is taken.
        """
        email = sanitize_email(email)
        name = sanitize_name(name)
        if not validate_email(email):
            raise ValidationError("Invalid email address")
        if not name:
            raise ValidationError("Name is required")
        validate_password_strength(password)

        if AuthService.get_user_by_email(db, email):
            raise AlreadyExistsError("Account", "Email already registered")

        user = User(email=email, name=name, role=role, email_verified=email_verified)
        db.add(user)
        try:
            db.flush()
            CredentialStore.set_password(db, user.id, password)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise AlreadyExistsError("Account", "Email already registered")

        db.refresh(user)
        logger.info("Created %s account %s", role, user.id)
        return user

    @staticmethod
    def register(
        db: Session, email: str, password: str, name: str, notifier: Notifier
    ) -> tuple[User, bool]:
        """
        Register a client account and send its verification message.

        Returns the user and whether the verification message went out.
        The account survives a delivery failure; the owner can ask for a
        resend.
        """
        user = AuthService.create_user(db, email=email, password=password, name=name)
        try:
            RecoveryService.issue_email_verification(db, user, notifier)
        except ServiceUnavailableError:
            return user, False
        return user, True

    @staticmethod
    def change_password(
        db: Session, user: User, current_password: str, new_password: str
    ) -> None:
        """Replace the password after re-checking the current one. Ends every session."""
        if not CredentialStore.check_password(db, user.id, current_password):
            raise InvalidCredentialsError("Current password is incorrect")
        validate_password_strength(new_password)
        if current_password == new_password:
            raise ValidationError("New password must be different from the current password")

        CredentialStore.set_password(db, user.id, new_password)
        SessionManager.revoke_all_sessions(db, user.id, commit=False)
        db.commit()
        logger.info("Password changed for user %s", user.id)
