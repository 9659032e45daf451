"""
TOTP multi-factor authentication: enrollment lifecycle and the second
step of an MFA login.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import pyotp
from sqlalchemy.orm import Session

from app.core import clock
from app.core.config import settings
from app.core.encryption import decrypt_secret, encrypt_secret
from app.core.exceptions import (
    InvalidMfaCodeError,
    InvalidTokenError,
    MfaStateError,
    TokenAlreadyConsumedError,
    ValidationError,
)
from app.core.security import TOKEN_TYPE_MFA_PENDING, decode_token, expires_at, issued_at
from app.models import MfaEnrollment, User
from app.services.revocation_ledger import RevocationLedger
from app.services.session_service import Authenticated, SessionManager

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6


@dataclass
class EnrollmentOffer:
    secret: str
    provisioning_uri: str


def _verify_code(secret: str, code: str) -> bool:
    code = (code or "").strip()
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    # Integer timestamp keeps pyotp away from local-time conversion of naive datetimes
    now = int(clock.to_timestamp(clock.utcnow()))
    try:
        return pyotp.TOTP(secret).verify(
            code, for_time=now, valid_window=settings.MFA_VALID_WINDOW
        )
    except ValueError:
        # Not valid base32
        return False


class MfaService:
    """Service for TOTP enrollment and verification."""

    @staticmethod
    def _get_enrollment(db: Session, user_id: UUID) -> Optional[MfaEnrollment]:
        return db.query(MfaEnrollment).filter(MfaEnrollment.user_id == user_id).first()

    @staticmethod
    def status(db: Session, user: User) -> bool:
        enrollment = MfaService._get_enrollment(db, user.id)
        return bool(enrollment and enrollment.enabled)

    @staticmethod
    def begin_enrollment(db: Session, user: User) -> EnrollmentOffer:
        """
        Generate a candidate secret and its otpauth:// URI.

        Nothing is stored: the client echoes the secret back together with a
        code from its authenticator app to confirm.
        """
        if MfaService.status(db, user):
            raise MfaStateError("MFA is already enabled")

        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(
            name=user.email,
            issuer_name=settings.MFA_ISSUER,
        )
        return EnrollmentOffer(secret=secret, provisioning_uri=uri)

    @staticmethod
    def confirm_enrollment(db: Session, user: User, secret: str, code: str) -> None:
        """Enable MFA once `code` proves the authenticator holds `secret`."""
        if MfaService.status(db, user):
            raise MfaStateError("MFA is already enabled")

        secret = (secret or "").strip().upper()
        try:
            pyotp.TOTP(secret).byte_secret()
        except ValueError:
            raise ValidationError("Invalid MFA secret")

        if not _verify_code(secret, code):
            logger.warning("MFA enrollment code rejected for user %s", user.id)
            raise InvalidMfaCodeError()

        enrollment = MfaService._get_enrollment(db, user.id)
        if enrollment is None:
            enrollment = MfaEnrollment(user_id=user.id)
            db.add(enrollment)
        enrollment.secret_encrypted = encrypt_secret(secret)
        enrollment.enabled = True
        enrollment.enabled_at = clock.utcnow()
        db.commit()

        logger.info("MFA enabled for user %s", user.id)

    @staticmethod
    def disable(db: Session, user: User) -> None:
        enrollment = MfaService._get_enrollment(db, user.id)
        if enrollment is None or not enrollment.enabled:
            raise MfaStateError("MFA is not enabled")

        enrollment.enabled = False
        enrollment.enabled_at = None
        enrollment.secret_encrypted = None
        db.commit()

        logger.info("MFA disabled for user %s", user.id)

    @staticmethod
    def verify_login(db: Session, mfa_token: str, code: str) -> Authenticated:
        """
        Second login step: trade a pending assertion plus a TOTP code for
        a token pair.

        A wrong code leaves the assertion usable until it expires. A right
        code burns it in the revocation ledger so it cannot be replayed.
        """
        claims = decode_token(mfa_token, expected_type=TOKEN_TYPE_MFA_PENDING)
        if claims.get("mfa_pending") is not True:
            raise InvalidTokenError()
        try:
            user_id = UUID(claims["sub"])
        except ValueError:
            raise InvalidTokenError()

        if RevocationLedger.is_revoked(db, mfa_token):
            raise TokenAlreadyConsumedError()

        user = db.query(User).filter(User.id == user_id).first()
        enrollment = MfaService._get_enrollment(db, user_id)
        if user is None or enrollment is None or not enrollment.enabled:
            raise InvalidTokenError()
        if RevocationLedger.is_stale_by_watermark(db, issued_at(claims), user_id):
            # Sessions were revoked (logout, reset, admin) after the password step
            raise InvalidTokenError("Session has ended. Please sign in again.")

        if not _verify_code(decrypt_secret(enrollment.secret_encrypted), code):
            logger.warning("Invalid MFA code during login for user %s", user_id)
            raise InvalidMfaCodeError()

        RevocationLedger.consume(db, mfa_token, user_id, expires_at(claims))
        logger.info("MFA login completed for user %s", user_id)
        return SessionManager.start_session(db, user)
