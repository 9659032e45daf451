"""Periodic garbage collection of expired tokens and idle attempt counters.

Expiry is enforced at read time everywhere, so this job only reclaims space.
"""

import logging

from sqlalchemy.orm import Session

from app.core import clock
from app.models import EmailVerificationToken, PasswordResetToken
from app.services.attempt_counter import ALL_COUNTERS
from app.services.revocation_ledger import RevocationLedger
from app.services.session_service import SessionManager

logger = logging.getLogger(__name__)


def sweep_expired_records(db: Session) -> dict[str, int]:
    """Delete everything that has expired on its own. Returns counts per table."""
    now = clock.utcnow()
    removed = {
        "revoked_access_tokens": RevocationLedger.sweep(db),
        "refresh_tokens": SessionManager.sweep_expired_refresh_tokens(db),
        "password_reset_tokens": db.query(PasswordResetToken).filter(
            PasswordResetToken.expires_at <= now
        ).delete(synchronize_session=False),
        "email_verification_tokens": db.query(EmailVerificationToken).filter(
            EmailVerificationToken.expires_at <= now
        ).delete(synchronize_session=False),
    }
    for counter in ALL_COUNTERS:
        removed[counter.model.__tablename__] = counter.sweep(db)
    db.commit()

    total = sum(removed.values())
    if total:
        logger.info("Token sweep removed %d expired rows", total)
    return removed
