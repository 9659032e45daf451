import uuid

from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from app.core import clock
from app.core.database import Base

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_CLIENT)  # "admin" or "client"
    email_verified = Column(Boolean, nullable=False, default=False)
    # Access tokens issued before this instant are rejected
    last_logout_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    # Relationships
    credential = relationship(
        "Credential", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    mfa_enrollment = relationship(
        "MfaEnrollment", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
    )

    def __repr__(self):
        return f"<User {self.email}>"


class Credential(Base):
    """Password hash for a user; replaced wholesale on change or reset."""

    __tablename__ = "credentials"

    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    password_hash = Column(String(255), nullable=False)
    updated_at = Column(DateTime, default=lambda: clock.utcnow(), nullable=False)

    user = relationship("User", back_populates="credential")

    def __repr__(self):
        return f"<Credential user={self.user_id}>"
