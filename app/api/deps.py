from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.exceptions import ForbiddenError, InvalidTokenError
from app.core.rate_limit import get_client_ip as _resolve_client_ip
from app.models import User, ROLE_ADMIN
from app.services.notifier import LoggingNotifier, Notifier
from app.services.session_service import CurrentSession, SessionManager


# HTTP Bearer token scheme; a missing header is reported as InvalidTokenError
security = HTTPBearer(auto_error=False)

_default_notifier = LoggingNotifier()


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier() -> Notifier:
    """Outbound message dependency. Swap for a real provider via dependency_overrides."""
    return _default_notifier


def get_client_ip(request: Request) -> str:
    return _resolve_client_ip(request)


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> CurrentSession:
    """
    Dependency to validate the bearer token on a protected route.
    Raises InvalidTokenError or TokenExpiredError.
    """
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError("Not authenticated")
    return SessionManager.authenticate(db, credentials.credentials)


def get_current_user(
    session: CurrentSession = Depends(get_current_session),
) -> User:
    return session.user


def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Dependency to require admin role.
    Raises ForbiddenError if user is not an admin.
    """
    if current_user.role != ROLE_ADMIN:
        raise ForbiddenError("Admin access required")
    return current_user
