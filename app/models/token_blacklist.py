"""Revoked access tokens and server-side refresh tokens."""

from uuid import uuid4
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Uuid

from app.core import clock
from app.core.database import Base


class RevokedAccessToken(Base):
    """Stores revoked access tokens (and consumed MFA assertions) until they expire."""

    __tablename__ = "revoked_access_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    # Index for cleanup of expired tokens
    __table_args__ = (
        Index("ix_revoked_access_tokens_expires_at", "expires_at"),
        Index("ix_revoked_access_tokens_user_id", "user_id"),
    )


class RefreshToken(Base):
    """Stores active refresh tokens for rotation. One row per device session."""

    __tablename__ = "refresh_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)
    rotated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )
