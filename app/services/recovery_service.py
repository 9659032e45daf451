"""
Recovery engine: password-reset tokens and email-verification tokens.

Both are single-use opaque tokens stored by SHA-256 digest, at most one
live token per owner. A new token supersedes the previous one inside the
same transaction, and the notifier is called before commit so a token only
exists if its owner was told about it.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock
from app.core.config import settings
from app.core.exceptions import (
    InvalidTokenError,
    RateLimitExceededError,
    ServiceUnavailableError,
    TokenAlreadyConsumedError,
    TokenExpiredError,
)
from app.core.log_sanitizer import sanitize_error_message
from app.core.sanitization import normalize_email
from app.core.security import generate_opaque_token, hash_token
from app.models import EmailVerificationToken, PasswordResetToken, User
from app.services.attempt_counter import (
    MAX_WRITE_RETRIES,
    login_attempts,
    reset_attempts_by_email,
    reset_attempts_by_origin,
)
from app.services.credential_store import CredentialStore, validate_password_strength
from app.services.notifier import NotificationError, Notifier
from app.services.session_service import SessionManager

logger = logging.getLogger(__name__)


def _supersede_token(db: Session, model, owner_column, owner, expires_at: datetime) -> str:
    """
    Replace the owner's live token with a fresh one and return the raw value.
    Nothing is committed.
    """
    for _ in range(MAX_WRITE_RETRIES):
        token = generate_opaque_token()
        db.query(model).filter(owner_column == owner).delete(synchronize_session=False)
        try:
            with db.begin_nested():
                db.add(model(
                    token_hash=hash_token(token),
                    expires_at=expires_at,
                    created_at=clock.utcnow(),
                    **{owner_column.key: owner},
                ))
            return token
        except IntegrityError:
            # A concurrent request inserted for the same owner; replace it
            continue
    db.rollback()
    raise ServiceUnavailableError("Token store")


def _find_live_token(db: Session, model, token: str):
    """
    Look up a token by digest. Expired rows are removed on sight.

    Raises InvalidTokenError when absent and TokenExpiredError when expired.
    """
    row = db.query(model).filter(model.token_hash == hash_token(token)).first()
    if row is None:
        raise InvalidTokenError("Invalid or already used token")

    if row.expires_at <= clock.utcnow():
        db.query(model).filter(model.id == row.id).delete(synchronize_session=False)
        db.commit()
        raise TokenExpiredError()

    return row


def _consume_token(db: Session, model, row) -> None:
    """Delete a token row only if it is still the one we read. Caller commits."""
    consumed = db.query(model).filter(
        model.id == row.id,
        model.token_hash == row.token_hash,
    ).delete(synchronize_session=False)
    if consumed != 1:
        db.rollback()
        raise TokenAlreadyConsumedError()


class RecoveryService:
    """Service for password reset and email verification business logic."""

    # ---- Password reset ----

    @staticmethod
    def request_password_reset(db: Session, email: str, origin: str, notifier: Notifier) -> None:
        """
        Issue a reset token and send it to `email`.

        Both the origin counter and the email counter must be open, and
        every request counts against both whether or not the account
        exists. Unknown emails return silently so the response never
        reveals whether an account exists.
        """
        email = normalize_email(email)

        remaining = reset_attempts_by_origin.lockout_remaining(db, origin)
        if remaining is not None:
            logger.warning("Password reset rate limit hit for origin %s", origin)
            raise RateLimitExceededError(remaining, scope="origin")

        remaining = reset_attempts_by_email.lockout_remaining(db, email)
        if remaining is not None:
            logger.warning("Password reset rate limit hit for email %s", email)
            raise RateLimitExceededError(remaining, scope="email")

        reset_attempts_by_origin.record_failure(db, origin)
        reset_attempts_by_email.record_failure(db, email)

        user = db.query(User).filter(User.email == email).first()

        # Same token work for unknown emails so response timing does not reveal them
        expires_at = clock.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES)
        token = _supersede_token(db, PasswordResetToken, PasswordResetToken.email, email, expires_at)

        if user is None:
            db.rollback()
            logger.info("Password reset requested for unknown email %s", email)
            return

        try:
            notifier.send_recovery_message(email, token)
        except NotificationError as e:
            db.rollback()
            logger.error(
                "Password reset message to %s failed: %s", email, sanitize_error_message(e)
            )
            raise ServiceUnavailableError("Email delivery")

        db.commit()
        logger.info("Password reset token issued for %s", email)

    @staticmethod
    def verify_reset_token(db: Session, token: str) -> str:
        """Check that a reset token is live. Returns the owning email."""
        return _find_live_token(db, PasswordResetToken, token).email

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> User:
        """
        Consume a reset token and set a new password.

        A password that fails the policy leaves the token usable. On success
        every session of the account is revoked and its login lockout cleared.
        """
        row = _find_live_token(db, PasswordResetToken, token)
        email = row.email

        validate_password_strength(new_password)

        _consume_token(db, PasswordResetToken, row)

        user = db.query(User).filter(User.email == email).first()
        if user is None:
            db.commit()
            raise InvalidTokenError("Invalid or already used token")

        CredentialStore.set_password(db, user.id, new_password)
        SessionManager.revoke_all_sessions(db, user.id, commit=False)
        db.commit()

        login_attempts.clear(db, email)
        logger.info("Password reset completed for user %s", user.id)
        return user

    # ---- Email verification ----

    @staticmethod
    def issue_email_verification(db: Session, user: User, notifier: Notifier) -> None:
        """Send a fresh verification token, superseding any earlier one."""
        expires_at = clock.utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        token = _supersede_token(
            db, EmailVerificationToken, EmailVerificationToken.user_id, user.id, expires_at
        )

        try:
            notifier.send_verification_message(user.email, user.name, token)
        except NotificationError as e:
            db.rollback()
            logger.error(
                "Verification message to %s failed: %s", user.email, sanitize_error_message(e)
            )
            raise ServiceUnavailableError("Email delivery")

        db.commit()
        logger.info("Verification token issued for user %s", user.id)

    @staticmethod
    def resend_verification(db: Session, email: str, notifier: Notifier) -> None:
        """Reissue a verification token. Unknown or verified emails succeed silently."""
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email).first()
        if user is None or user.email_verified:
            return
        RecoveryService.issue_email_verification(db, user, notifier)

    @staticmethod
    def verify_email(db: Session, token: str) -> User:
        """Consume a verification token and mark the owner's email verified."""
        row = _find_live_token(db, EmailVerificationToken, token)
        user_id = row.user_id

        _consume_token(db, EmailVerificationToken, row)

        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            db.commit()
            raise InvalidTokenError("Invalid or already used token")
        if user.email_verified:
            db.commit()
            raise TokenAlreadyConsumedError("Email is already verified")

        user.email_verified = True
        db.commit()
        logger.info("Email verified for user %s", user.id)
        return user
