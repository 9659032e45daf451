from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


# Request schemas
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)
    name: str = Field(..., min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)


class MfaVerifyRequest(BaseModel):
    mfa_token: str
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., max_length=128)


class VerifyEmailRequest(BaseModel):
    token: str


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class PasswordResetRequest(BaseModel):
    email: EmailStr


class VerifyResetTokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., max_length=128)


class MfaEnableRequest(BaseModel):
    secret: str = Field(..., min_length=16, max_length=64)
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


# Response schemas
class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    email_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Tokens for a completed login. `mfa_required` is always False here."""

    mfa_required: bool = False
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class MfaChallengeResponse(BaseModel):
    """Password accepted; the client must now call /auth/mfa/verify."""

    mfa_required: bool = True
    mfa_token: str


class RefreshTokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RegisterResponse(BaseModel):
    user: UserResponse
    verification_email_sent: bool


class MessageResponse(BaseModel):
    message: str


class ResetTokenStatusResponse(BaseModel):
    valid: bool = True
    email: str


class MfaStatusResponse(BaseModel):
    enabled: bool


class MfaSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str


class RevokeSessionsResponse(BaseModel):
    user_id: UUID
    refresh_tokens_revoked: int


class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None
    retry_after_minutes: Optional[int] = None
    reasons: Optional[List[str]] = None
