"""
Session manager: password login, refresh-token rotation, logout and
per-request access-token authentication.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Union
from uuid import UUID

from sqlalchemy.orm import Session

from app.core import clock
from app.core.config import settings
from app.core.exceptions import (
    AccountLockedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    TokenExpiredError,
)
from app.core.sanitization import normalize_email
from app.core.security import (
    REFRESH_TOKEN_BYTES,
    TOKEN_TYPE_ACCESS,
    create_access_token,
    create_mfa_token,
    decode_token,
    generate_opaque_token,
    hash_token,
    issued_at,
)
from app.models import MfaEnrollment, RefreshToken, User
from app.services.attempt_counter import login_attempts
from app.services.credential_store import CredentialStore
from app.services.revocation_ledger import RevocationLedger

logger = logging.getLogger(__name__)


@dataclass
class Authenticated:
    """Login finished: the caller holds a fresh token pair."""

    access_token: str
    refresh_token: str
    user: User


@dataclass
class MfaChallenge:
    """Password accepted but a TOTP code is still owed. No tokens yet."""

    mfa_token: str
    user: User = field(repr=False)


LoginOutcome = Union[Authenticated, MfaChallenge]


@dataclass
class CurrentSession:
    """The user behind a validated bearer token, with the token itself."""

    user: User
    access_token: str
    claims: dict


class SessionManager:
    """Service for session lifecycle business logic."""

    @staticmethod
    def is_mfa_enabled(db: Session, user_id: UUID) -> bool:
        return bool(
            db.query(MfaEnrollment.enabled)
            .filter(MfaEnrollment.user_id == user_id)
            .scalar()
        )

    @staticmethod
    def login(db: Session, email: str, password: str) -> LoginOutcome:
        """
        Authenticate by email and password.

        Unknown emails and wrong passwords raise the same
        InvalidCredentialsError and both count toward the lockout.
        """
        email = normalize_email(email)

        remaining = login_attempts.lockout_remaining(db, email)
        if remaining is not None:
            logger.warning("Login rejected for locked identity %s", email)
            raise AccountLockedError(remaining)

        user = db.query(User).filter(User.email == email).first()
        if not CredentialStore.check_password(db, user.id if user else None, password):
            attempts = login_attempts.record_failure(db, email)
            logger.info("Failed login for %s (attempt %d)", email, attempts)
            raise InvalidCredentialsError()

        if settings.REQUIRE_EMAIL_VERIFICATION and not user.email_verified:
            login_attempts.record_failure(db, email)
            raise EmailNotVerifiedError()

        login_attempts.clear(db, email)

        if SessionManager.is_mfa_enabled(db, user.id):
            logger.info("Password accepted for %s, TOTP required", email)
            return MfaChallenge(
                mfa_token=create_mfa_token(str(user.id), user.email, user.role),
                user=user,
            )

        return SessionManager.start_session(db, user)

    @staticmethod
    def start_session(db: Session, user: User) -> Authenticated:
        """Mint an access token and store a new refresh token for `user`."""
        now = clock.utcnow()
        refresh_token = generate_opaque_token(REFRESH_TOKEN_BYTES)
        db.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            expires_at=now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            created_at=now,
        ))
        SessionManager.sweep_expired_refresh_tokens(db, user.id)
        db.commit()

        access_token = create_access_token(str(user.id), user.email, user.role)
        logger.info("Session started for user %s", user.id)
        return Authenticated(access_token=access_token, refresh_token=refresh_token, user=user)

    @staticmethod
    def refresh(db: Session, refresh_token: str) -> Authenticated:
        """
        Exchange a refresh token for a new token pair (rotation).

        The stored row is rewritten in place with a conditional UPDATE keyed
        by the old hash, so of two concurrent refreshes only one succeeds
        and the old value never works again.
        """
        old_hash = hash_token(refresh_token)
        record = db.query(RefreshToken).filter(RefreshToken.token_hash == old_hash).first()
        if record is None:
            raise InvalidTokenError("Invalid refresh token")

        now = clock.utcnow()
        if record.expires_at <= now:
            db.query(RefreshToken).filter(RefreshToken.id == record.id).delete(
                synchronize_session=False
            )
            db.commit()
            raise TokenExpiredError("Refresh token expired. Please sign in again.")

        user = db.query(User).filter(User.id == record.user_id).first()
        if user is None:
            raise InvalidTokenError("Invalid refresh token")

        new_refresh_token = generate_opaque_token(REFRESH_TOKEN_BYTES)
        rotated = db.query(RefreshToken).filter(
            RefreshToken.id == record.id,
            RefreshToken.token_hash == old_hash,
            RefreshToken.expires_at > now,
        ).update({
            RefreshToken.token_hash: hash_token(new_refresh_token),
            RefreshToken.expires_at: now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            RefreshToken.rotated_at: now,
        }, synchronize_session=False)
        if rotated != 1:
            db.rollback()
            logger.warning("Refresh token for user %s was rotated concurrently", user.id)
            raise InvalidTokenError("Invalid refresh token")

        SessionManager.sweep_expired_refresh_tokens(db, user.id)
        db.commit()

        access_token = create_access_token(str(user.id), user.email, user.role)
        return Authenticated(access_token=access_token, refresh_token=new_refresh_token, user=user)

    @staticmethod
    def authenticate(db: Session, access_token: str) -> CurrentSession:
        """
        Validate a bearer token for a protected call.

        Raises InvalidTokenError or TokenExpiredError; never returns a
        partially trusted session.
        """
        claims = decode_token(access_token, expected_type=TOKEN_TYPE_ACCESS)
        try:
            user_id = UUID(claims["sub"])
        except ValueError:
            raise InvalidTokenError()

        if RevocationLedger.is_revoked(db, access_token):
            raise InvalidTokenError("Token has been revoked")
        if RevocationLedger.is_stale_by_watermark(db, issued_at(claims), user_id):
            raise InvalidTokenError("Session has ended. Please sign in again.")

        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise InvalidTokenError()

        return CurrentSession(user=user, access_token=access_token, claims=claims)

    @staticmethod
    def logout(db: Session, access_token: str, user_id: UUID) -> None:
        """Revoke the presented token, move the watermark and drop every refresh token."""
        RevocationLedger.revoke(db, access_token, user_id)
        removed = db.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(
            synchronize_session=False
        )
        RevocationLedger.sweep(db)
        db.commit()
        logger.info("User %s logged out (%d refresh tokens removed)", user_id, removed)

    @staticmethod
    def revoke_all_sessions(db: Session, user_id: UUID, commit: bool = True) -> int:
        """
        End every session of a user on every device: watermark to now and
        all refresh tokens deleted. Returns the number of refresh tokens removed.
        """
        RevocationLedger.set_watermark(db, user_id)
        removed = db.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(
            synchronize_session=False
        )
        if commit:
            db.commit()
        logger.info("All sessions revoked for user %s", user_id)
        return removed

    @staticmethod
    def sweep_expired_refresh_tokens(db: Session, user_id: UUID | None = None) -> int:
        """Delete expired refresh tokens, for one user or for everyone. Caller commits."""
        query = db.query(RefreshToken).filter(RefreshToken.expires_at <= clock.utcnow())
        if user_id is not None:
            query = query.filter(RefreshToken.user_id == user_id)
        return query.delete(synchronize_session=False)
