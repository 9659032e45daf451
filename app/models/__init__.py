from app.models.user import User, Credential, ROLE_ADMIN, ROLE_CLIENT
from app.models.token_blacklist import RevokedAccessToken, RefreshToken
from app.models.attempts import LoginAttempt, PasswordResetEmailAttempt, PasswordResetOriginAttempt
from app.models.recovery import PasswordResetToken, EmailVerificationToken
from app.models.mfa import MfaEnrollment

__all__ = [
    "User",
    "Credential",
    "ROLE_ADMIN",
    "ROLE_CLIENT",
    "RevokedAccessToken",
    "RefreshToken",
    "LoginAttempt",
    "PasswordResetEmailAttempt",
    "PasswordResetOriginAttempt",
    "PasswordResetToken",
    "EmailVerificationToken",
    "MfaEnrollment",
]
