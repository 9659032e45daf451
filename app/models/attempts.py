"""Time-windowed attempt counters (login lockout, reset rate limiting)."""

from uuid import uuid4
from sqlalchemy import Column, Integer, String, DateTime, Index, Uuid
from sqlalchemy.orm import declared_attr

from app.core import clock
from app.core.database import Base


class AttemptCounterMixin:
    """Shared shape: one row per identity, open or locked."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    identity = Column(String(255), unique=True, nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    last_attempt_at = Column(DateTime, nullable=False, default=lambda: clock.utcnow())
    locked_until = Column(DateTime, nullable=True)

    @declared_attr
    def __table_args__(cls):
        return (Index(f"ix_{cls.__tablename__}_last_attempt_at", "last_attempt_at"),)


class LoginAttempt(AttemptCounterMixin, Base):
    """Failed logins keyed by email (registered or not)."""

    __tablename__ = "login_attempts"


class PasswordResetEmailAttempt(AttemptCounterMixin, Base):
    """Password reset requests keyed by email."""

    __tablename__ = "password_reset_attempts_by_email"


class PasswordResetOriginAttempt(AttemptCounterMixin, Base):
    """Password reset requests keyed by client IP address."""

    __tablename__ = "password_reset_attempts_by_origin"
