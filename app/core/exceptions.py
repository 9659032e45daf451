"""Custom exceptions and error handling for the Keyward API."""

import math
from datetime import timedelta
from typing import Optional

from fastapi import HTTPException, status


def minutes_remaining(remaining: timedelta) -> int:
    """Round a remaining duration up to whole minutes (never below 1)."""
    return max(1, math.ceil(remaining.total_seconds() / 60))


class KeywardException(HTTPException):
    """Base exception for the Keyward API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def extra_content(self) -> dict:
        """Additional fields merged into the JSON error envelope."""
        return {}


# Authentication Errors (401, 403, 423)
class InvalidCredentialsError(KeywardException):
    """Raised when login credentials are invalid."""

    def __init__(self, detail: str = "Invalid email or password"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountLockedError(KeywardException):
    """Raised when an identity is locked out after repeated login failures."""

    def __init__(self, remaining: timedelta):
        self.retry_after_minutes = minutes_remaining(remaining)
        super().__init__(
            status_code=status.HTTP_423_LOCKED,
            detail=(
                "Account locked after too many failed login attempts. "
                f"Try again in {self.retry_after_minutes} minutes."
            ),
            error_code="ACCOUNT_LOCKED",
            headers={"Retry-After": str(int(remaining.total_seconds()) or 1)},
        )

    def extra_content(self) -> dict:
        return {"retry_after_minutes": self.retry_after_minutes}


class EmailNotVerifiedError(KeywardException):
    """Raised when a correct login targets an account whose email is unverified."""

    def __init__(self, detail: str = "Verify your email address before signing in"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="EMAIL_NOT_VERIFIED",
        )


class InvalidMfaCodeError(KeywardException):
    """Raised when a TOTP code does not match. No tokens are issued."""

    def __init__(self, detail: str = "Invalid authentication code"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_MFA_CODE",
        )


class TokenExpiredError(KeywardException):
    """Raised when a token has expired."""

    def __init__(self, detail: str = "Token has expired"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="TOKEN_EXPIRED",
        )


class InvalidTokenError(KeywardException):
    """Raised when a token is unknown, malformed, revoked or badly signed."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )


class TokenAlreadyConsumedError(KeywardException):
    """Raised when a single-use token is presented after it was used."""

    def __init__(self, detail: str = "Token has already been used"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="TOKEN_ALREADY_CONSUMED",
        )


class ForbiddenError(KeywardException):
    """Raised when user lacks permission for an action."""

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


# Resource Errors (404, 409)
class NotFoundError(KeywardException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(KeywardException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


class MfaStateError(KeywardException):
    """Raised when an MFA operation does not fit the current enrollment state."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="MFA_STATE_CONFLICT",
        )


# Validation Errors (400)
class ValidationError(KeywardException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


class WeakPasswordError(KeywardException):
    """Raised when a new password fails the complexity policy."""

    def __init__(self, reasons: list[str]):
        self.reasons = list(reasons)
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password does not meet the complexity requirements",
            error_code="WEAK_PASSWORD",
        )

    def extra_content(self) -> dict:
        return {"reasons": self.reasons}


# Rate Limiting (429)
class RateLimitExceededError(KeywardException):
    """Raised when a durable request counter is over its threshold.

    The scope ("email" or "origin") is kept for logging only; callers see
    the same response whichever counter tripped.
    """

    def __init__(self, remaining: timedelta, scope: str = "email"):
        self.scope = scope
        self.retry_after_minutes = minutes_remaining(remaining)
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=(
                "Too many requests. "
                f"Try again in {self.retry_after_minutes} minutes."
            ),
            error_code="RATE_LIMIT_EXCEEDED",
            headers={"Retry-After": str(int(remaining.total_seconds()) or 1)},
        )

    def extra_content(self) -> dict:
        return {"retry_after_minutes": self.retry_after_minutes}


# Server Errors (503)
class ServiceUnavailableError(KeywardException):
    """Raised when an external service is unavailable."""

    def __init__(self, service: str = "Service", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail or f"{service} is temporarily unavailable",
            error_code="SERVICE_UNAVAILABLE",
        )
