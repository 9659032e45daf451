from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import (
    get_client_ip,
    get_current_session,
    get_current_user,
    get_db,
    get_notifier,
    require_admin,
)
from app.core.exceptions import NotFoundError
from app.core.rate_limit import limiter, public_limiter
from app.models import User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    MfaChallengeResponse,
    MfaEnableRequest,
    MfaSetupResponse,
    MfaStatusResponse,
    MfaVerifyRequest,
    PasswordResetRequest,
    RefreshTokenRequest,
    RefreshTokenResponse,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    ResetTokenStatusResponse,
    RevokeSessionsResponse,
    UserResponse,
    VerifyEmailRequest,
    VerifyResetTokenRequest,
)
from app.services.auth_service import AuthService
from app.services.mfa_service import MfaService
from app.services.notifier import Notifier
from app.services.recovery_service import RecoveryService
from app.services.session_service import Authenticated, CurrentSession, SessionManager


router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent"
VERIFICATION_RESENT_MESSAGE = (
    "If the account exists and is unverified, a new verification email has been sent"
)


def _auth_response(outcome: Authenticated) -> AuthResponse:
    return AuthResponse(
        access_token=outcome.access_token,
        refresh_token=outcome.refresh_token,
        user=UserResponse.model_validate(outcome.user),
    )


# ---- Registration and login ----

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@public_limiter.limit("5/minute")  # Strict rate limit for registration
def register(
    request: Request,
    data: RegisterRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Create a client account and send an email verification link.
    The account cannot sign in until the email is verified.
    """
    user, sent = AuthService.register(
        db, email=data.email, password=data.password, name=data.name, notifier=notifier
    )
    return RegisterResponse(
        user=UserResponse.model_validate(user),
        verification_email_sent=sent,
    )


@router.post("/login", response_model=Union[AuthResponse, MfaChallengeResponse])
@public_limiter.limit("10/minute")  # Strict rate limit for login
def login(
    request: Request,
    data: LoginRequest,
    db: Session = Depends(get_db),
):
    """
    Authenticate with email and password.

    Returns tokens, or an MFA challenge when the account has TOTP enabled.
    Unknown emails and wrong passwords get the same 401.
    """
    outcome = SessionManager.login(db, data.email, data.password)
    if isinstance(outcome, Authenticated):
        return _auth_response(outcome)
    return MfaChallengeResponse(mfa_token=outcome.mfa_token)


@router.post("/mfa/verify", response_model=AuthResponse)
@public_limiter.limit("10/minute")
def verify_mfa(
    request: Request,
    data: MfaVerifyRequest,
    db: Session = Depends(get_db),
):
    """Complete an MFA login with the pending token and a TOTP code."""
    return _auth_response(MfaService.verify_login(db, data.mfa_token, data.code))


@router.post("/refresh", response_model=RefreshTokenResponse)
@public_limiter.limit("30/minute")
def refresh_token(
    request: Request,
    data: RefreshTokenRequest,
    db: Session = Depends(get_db),
):
    """
    Exchange a refresh token for a new token pair.
    The presented refresh token stops working immediately.
    """
    outcome = SessionManager.refresh(db, data.refresh_token)
    return RefreshTokenResponse(
        access_token=outcome.access_token,
        refresh_token=outcome.refresh_token,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    session: CurrentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Revoke the bearer token and every refresh token of the user.
    Other access tokens issued before now stop working too.
    """
    SessionManager.logout(db, session.access_token, session.user.id)
    return MessageResponse(message="Successfully logged out")


@router.get("/me", response_model=UserResponse)
@limiter.limit("60/minute")
def get_me(
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """Get the current user's summary."""
    return UserResponse.model_validate(current_user)


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit("5/minute")
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Change password. All sessions, including this one, are ended."""
    AuthService.change_password(db, current_user, data.current_password, data.new_password)
    return MessageResponse(message="Password changed. Please sign in again.")


# ---- Email verification ----

@router.post("/verify-email", response_model=MessageResponse)
@public_limiter.limit("10/minute")
def verify_email(
    request: Request,
    data: VerifyEmailRequest,
    db: Session = Depends(get_db),
):
    RecoveryService.verify_email(db, data.token)
    return MessageResponse(message="Email verified")


@router.post("/resend-verification", response_model=MessageResponse)
@public_limiter.limit("3/minute")
def resend_verification(
    request: Request,
    data: ResendVerificationRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    RecoveryService.resend_verification(db, data.email, notifier)
    return MessageResponse(message=VERIFICATION_RESENT_MESSAGE)


# ---- Password reset ----

@router.post("/request-password-reset", response_model=MessageResponse)
@public_limiter.limit("5/minute")
def request_password_reset(
    request: Request,
    data: PasswordResetRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    client_ip: str = Depends(get_client_ip),
):
    """
    Send a password reset link. The response is the same whether or not
    the account exists.
    """
    RecoveryService.request_password_reset(db, data.email, client_ip, notifier)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/verify-reset-token", response_model=ResetTokenStatusResponse)
@public_limiter.limit("10/minute")
def verify_reset_token(
    request: Request,
    data: VerifyResetTokenRequest,
    db: Session = Depends(get_db),
):
    """
    Check a reset token before showing the new-password form.
    The token travels in the body so it never lands in access logs.
    """
    email = RecoveryService.verify_reset_token(db, data.token)
    return ResetTokenStatusResponse(email=email)


@router.post("/reset-password", response_model=MessageResponse)
@public_limiter.limit("5/minute")
def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: Session = Depends(get_db),
):
    """Set a new password with a reset token. Every existing session is ended."""
    RecoveryService.reset_password(db, data.token, data.new_password)
    return MessageResponse(message="Password has been reset. Please sign in.")


# ---- MFA enrollment ----

@router.get("/mfa/status", response_model=MfaStatusResponse)
def mfa_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return MfaStatusResponse(enabled=MfaService.status(db, current_user))


@router.post("/mfa/setup", response_model=MfaSetupResponse)
@limiter.limit("10/minute")
def mfa_setup(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start enrollment. Returns a candidate secret and otpauth:// URI for the
    authenticator app; nothing is saved until /mfa/enable succeeds.
    """
    offer = MfaService.begin_enrollment(db, current_user)
    return MfaSetupResponse(secret=offer.secret, provisioning_uri=offer.provisioning_uri)


@router.post("/mfa/enable", response_model=MfaStatusResponse)
@limiter.limit("10/minute")
def mfa_enable(
    request: Request,
    data: MfaEnableRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    MfaService.confirm_enrollment(db, current_user, data.secret, data.code)
    return MfaStatusResponse(enabled=True)


@router.post("/mfa/disable", response_model=MfaStatusResponse)
@limiter.limit("10/minute")
def mfa_disable(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    MfaService.disable(db, current_user)
    return MfaStatusResponse(enabled=False)


# ---- Administration ----

@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
def revoke_user_sessions(
    user_id: UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin only: end every session of a user on every device."""
    user = AuthService.get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User")
    removed = SessionManager.revoke_all_sessions(db, user.id)
    return RevokeSessionsResponse(user_id=user.id, refresh_tokens_revoked=removed)
