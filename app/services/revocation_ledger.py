"""
Revocation ledger: revoked access tokens plus the per-user logout watermark.

An access token is dead if its hash is in `revoked_access_tokens` or if it
was issued before the owner's `last_logout_at`. Ledger rows only matter
until the token would have expired anyway, so the sweep is pure cleanup.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock
from app.core.exceptions import TokenAlreadyConsumedError
from app.core.security import get_unverified_expiry, hash_token
from app.models import RevokedAccessToken, User

logger = logging.getLogger(__name__)


class RevocationLedger:
    """Ledger operations. Callers own the transaction (nothing here commits)."""

    @staticmethod
    def _insert(db: Session, token: str, user_id: UUID, expires_at: datetime) -> bool:
        """Insert a ledger row; False if the token was already there."""
        try:
            with db.begin_nested():
                db.add(RevokedAccessToken(
                    token_hash=hash_token(token),
                    user_id=user_id,
                    expires_at=expires_at,
                    revoked_at=clock.utcnow(),
                ))
        except IntegrityError:
            return False
        return True

    @staticmethod
    def set_watermark(db: Session, user_id: UUID, at: Optional[datetime] = None) -> datetime:
        """Invalidate every access token the user was issued before `at` (default now)."""
        watermark = at or clock.utcnow()
        db.query(User).filter(User.id == user_id).update(
            {User.last_logout_at: watermark}, synchronize_session=False
        )
        return watermark

    @staticmethod
    def revoke(db: Session, access_token: str, user_id: UUID) -> None:
        """
        Revoke a presented access token and move the user's watermark to now.

        The watermark kills all of the user's outstanding access tokens, not
        just this one. A token whose expiry cannot be read is not stored but
        the watermark still moves.
        """
        expires_at = get_unverified_expiry(access_token)
        if expires_at is not None:
            RevocationLedger._insert(db, access_token, user_id, expires_at)
        RevocationLedger.set_watermark(db, user_id)

    @staticmethod
    def consume(db: Session, token: str, user_id: UUID, expires_at: datetime) -> None:
        """Burn a one-shot signed token (MFA assertion). Raises if already burnt."""
        if not RevocationLedger._insert(db, token, user_id, expires_at):
            raise TokenAlreadyConsumedError()

    @staticmethod
    def is_revoked(db: Session, token: str) -> bool:
        return db.query(RevokedAccessToken.id).filter(
            RevokedAccessToken.token_hash == hash_token(token)
        ).first() is not None

    @staticmethod
    def is_stale_by_watermark(db: Session, issued_at: datetime, user_id: UUID) -> bool:
        """True if a token issued at `issued_at` predates the user's last logout."""
        watermark = db.query(User.last_logout_at).filter(User.id == user_id).scalar()
        return watermark is not None and issued_at < watermark

    @staticmethod
    def sweep(db: Session) -> int:
        """Delete ledger rows whose tokens have expired on their own."""
        return db.query(RevokedAccessToken).filter(
            RevokedAccessToken.expires_at < clock.utcnow()
        ).delete(synchronize_session=False)
