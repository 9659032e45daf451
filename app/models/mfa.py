from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from app.core.database import Base


class MfaEnrollment(Base):
    """Confirmed TOTP enrollment. The base32 secret is stored Fernet-encrypted."""

    __tablename__ = "mfa_enrollments"

    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    secret_encrypted = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    enabled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="mfa_enrollment")

    def __repr__(self):
        return f"<MfaEnrollment user={self.user_id} enabled={self.enabled}>"
