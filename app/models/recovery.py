"""Single-use recovery tokens: password reset and email verification."""

from uuid import uuid4
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Uuid

from app.core import clock
from app.core.database import Base


class PasswordResetToken(Base):
    """At most one live reset token per email."""

    __tablename__ = "password_reset_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    __table_args__ = (
        Index("ix_password_reset_tokens_expires_at", "expires_at"),
    )


class EmailVerificationToken(Base):
    """At most one live verification token per user."""

    __tablename__ = "email_verification_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    __table_args__ = (
        Index("ix_email_verification_tokens_expires_at", "expires_at"),
    )
