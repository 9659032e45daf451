"""
Generic time-windowed counter with lockout, shared by login brute-force
protection and password-reset rate limiting.

Each identity has at most one row and is either Open (no lock, or lock in
the past) or Locked (`locked_until` in the future). All changes are single
UPDATE statements so concurrent failures never lose an increment.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Type

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock
from app.core.config import settings
from app.models.attempts import (
    AttemptCounterMixin,
    LoginAttempt,
    PasswordResetEmailAttempt,
    PasswordResetOriginAttempt,
)

logger = logging.getLogger(__name__)

# Insert races on the unique identity are retried this many times
MAX_WRITE_RETRIES = 3


@dataclass(frozen=True)
class AttemptPolicy:
    max_attempts: int
    window: timedelta
    lockout: timedelta


class AttemptCounter:
    """Counter/lockout state machine over one attempts table."""

    def __init__(
        self,
        model: Type[AttemptCounterMixin],
        policy: Callable[[], AttemptPolicy],
        name: str,
    ):
        self.model = model
        self._policy = policy
        self.name = name

    @property
    def policy(self) -> AttemptPolicy:
        # Read from settings on every call so configuration changes apply live
        return self._policy()

    def _query(self, db: Session, identity: str):
        return db.query(self.model).filter(self.model.identity == identity)

    def lockout_remaining(self, db: Session, identity: str) -> Optional[timedelta]:
        """
        Check an identity before the protected action runs.

        Returns the remaining lock time when Locked, otherwise None. An
        expired lock or an idle window returns the identity to Open.
        """
        model = self.model
        policy = self.policy
        now = clock.utcnow()

        row = (
            db.query(model.attempts, model.last_attempt_at, model.locked_until)
            .filter(model.identity == identity)
            .first()
        )
        if row is None:
            return None

        attempts, last_attempt_at, locked_until = row

        if locked_until is not None:
            if locked_until > now:
                return locked_until - now
            # Lock served: start over
            self.clear(db, identity)
            return None

        if last_attempt_at < now - policy.window:
            self.clear(db, identity)
            return None

        if attempts >= policy.max_attempts:
            # Threshold reached by concurrent writers that raced the lock
            locked_until = now + policy.lockout
            self._query(db, identity).filter(model.locked_until.is_(None)).update(
                {model.locked_until: locked_until}, synchronize_session=False
            )
            db.commit()
            logger.warning("%s locked for %s", self.name, identity)
            return policy.lockout

        return None

    def record_failure(self, db: Session, identity: str) -> int:
        """
        Count one failure (or one request, for rate limits) and commit.

        Returns the attempt count inside the current window.
        """
        model = self.model
        policy = self.policy
        now = clock.utcnow()
        window_start = now - policy.window

        for _ in range(MAX_WRITE_RETRIES):
            incremented = self._query(db, identity).filter(
                model.last_attempt_at >= window_start
            ).update(
                {model.attempts: model.attempts + 1, model.last_attempt_at: now},
                synchronize_session=False,
            )
            if incremented:
                break

            # Window expired: restart at 1. Guarded so two writers cannot both reset.
            restarted = self._query(db, identity).filter(
                model.last_attempt_at < window_start
            ).update(
                {model.attempts: 1, model.last_attempt_at: now, model.locked_until: None},
                synchronize_session=False,
            )
            if restarted:
                break

            try:
                with db.begin_nested():
                    db.add(model(identity=identity, attempts=1, last_attempt_at=now))
                break
            except IntegrityError:
                # Another request created the row first; count against it
                continue

        attempts = (
            db.query(model.attempts).filter(model.identity == identity).scalar() or 0
        )
        if attempts >= policy.max_attempts:
            self._query(db, identity).filter(
                or_(model.locked_until.is_(None), model.locked_until <= now)
            ).update(
                {model.locked_until: now + policy.lockout},
                synchronize_session=False,
            )
            logger.warning(
                "%s threshold reached for %s (%d attempts)", self.name, identity, attempts
            )

        db.commit()
        return attempts

    def clear(self, db: Session, identity: str) -> None:
        """Forget all history for an identity (one success resets everything)."""
        self._query(db, identity).delete(synchronize_session=False)
        db.commit()

    def sweep(self, db: Session) -> int:
        """Delete rows whose window and lock have both lapsed. Caller commits."""
        model = self.model
        policy = self.policy
        now = clock.utcnow()
        return (
            db.query(model)
            .filter(
                model.last_attempt_at < now - policy.window,
                or_(model.locked_until.is_(None), model.locked_until <= now),
            )
            .delete(synchronize_session=False)
        )


def _login_policy() -> AttemptPolicy:
    return AttemptPolicy(
        max_attempts=settings.MAX_LOGIN_ATTEMPTS,
        window=timedelta(minutes=settings.LOGIN_ATTEMPT_WINDOW_MINUTES),
        lockout=timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES),
    )


def _reset_email_policy() -> AttemptPolicy:
    window = timedelta(minutes=settings.PASSWORD_RESET_EMAIL_WINDOW_MINUTES)
    return AttemptPolicy(
        max_attempts=settings.PASSWORD_RESET_MAX_PER_EMAIL,
        window=window,
        lockout=window,
    )


def _reset_origin_policy() -> AttemptPolicy:
    window = timedelta(minutes=settings.PASSWORD_RESET_ORIGIN_WINDOW_MINUTES)
    return AttemptPolicy(
        max_attempts=settings.PASSWORD_RESET_MAX_PER_ORIGIN,
        window=window,
        lockout=window,
    )


login_attempts = AttemptCounter(LoginAttempt, _login_policy, "login")
reset_attempts_by_email = AttemptCounter(
    PasswordResetEmailAttempt, _reset_email_policy, "password reset (email)"
)
reset_attempts_by_origin = AttemptCounter(
    PasswordResetOriginAttempt, _reset_origin_policy, "password reset (origin)"
)

ALL_COUNTERS = (login_attempts, reset_attempts_by_email, reset_attempts_by_origin)
