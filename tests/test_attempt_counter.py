"""Tests for the windowed attempt counter and lockout state machine."""

from datetime import timedelta

from app.core.config import settings
from app.models import LoginAttempt
from app.services.attempt_counter import (
    AttemptCounter,
    AttemptPolicy,
    login_attempts,
    reset_attempts_by_email,
)


def _row(db, identity):
    return db.query(LoginAttempt).filter(LoginAttempt.identity == identity).first()


class TestLoginCounter:
    def test_first_failure_creates_row(self, db_session, frozen_clock):
        assert login_attempts.record_failure(db_session, "a@x.com") == 1

        row = _row(db_session, "a@x.com")
        assert row.attempts == 1
        assert row.last_attempt_at == frozen_clock.now
        assert row.locked_until is None

    def test_failures_accumulate_inside_window(self, db_session, frozen_clock):
        for expected in range(1, 4):
            frozen_clock.advance(minutes=1)
            assert login_attempts.record_failure(db_session, "a@x.com") == expected

        assert login_attempts.lockout_remaining(db_session, "a@x.com") is None

    def test_locks_at_threshold(self, db_session, frozen_clock):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            login_attempts.record_failure(db_session, "a@x.com")

        remaining = login_attempts.lockout_remaining(db_session, "a@x.com")
        assert remaining == timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        assert _row(db_session, "a@x.com").locked_until == (
            frozen_clock.now + timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        )

    def test_remaining_time_counts_down(self, db_session, frozen_clock):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            login_attempts.record_failure(db_session, "a@x.com")

        frozen_clock.advance(minutes=10)
        assert login_attempts.lockout_remaining(db_session, "a@x.com") == timedelta(minutes=5)

    def test_lock_expires_and_history_is_forgotten(self, db_session, frozen_clock):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            login_attempts.record_failure(db_session, "a@x.com")

        frozen_clock.advance(minutes=settings.LOGIN_LOCKOUT_MINUTES, seconds=1)

        assert login_attempts.lockout_remaining(db_session, "a@x.com") is None
        assert _row(db_session, "a@x.com") is None
        assert login_attempts.record_failure(db_session, "a@x.com") == 1

    def test_idle_window_restarts_count(self, db_session, frozen_clock):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
            login_attempts.record_failure(db_session, "a@x.com")

        frozen_clock.advance(minutes=settings.LOGIN_ATTEMPT_WINDOW_MINUTES, seconds=1)

        assert login_attempts.record_failure(db_session, "a@x.com") == 1
        assert login_attempts.lockout_remaining(db_session, "a@x.com") is None

    def test_clear_wipes_history(self, db_session):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
            login_attempts.record_failure(db_session, "a@x.com")

        login_attempts.clear(db_session, "a@x.com")

        assert _row(db_session, "a@x.com") is None
        assert login_attempts.record_failure(db_session, "a@x.com") == 1

    def test_identities_are_independent(self, db_session):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            login_attempts.record_failure(db_session, "a@x.com")

        assert login_attempts.lockout_remaining(db_session, "a@x.com") is not None
        assert login_attempts.lockout_remaining(db_session, "b@x.com") is None

    def test_over_threshold_without_lock_is_locked_on_check(self, db_session, frozen_clock):
        # Simulate concurrent writers that pushed the count past the limit
        db_session.add(LoginAttempt(
            identity="a@x.com",
            attempts=settings.MAX_LOGIN_ATTEMPTS + 2,
            last_attempt_at=frozen_clock.now,
        ))
        db_session.commit()

        remaining = login_attempts.lockout_remaining(db_session, "a@x.com")

        assert remaining == timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        assert _row(db_session, "a@x.com").locked_until is not None

    def test_sweep_removes_only_idle_rows(self, db_session, frozen_clock):
        login_attempts.record_failure(db_session, "old@x.com")
        frozen_clock.advance(minutes=settings.LOGIN_ATTEMPT_WINDOW_MINUTES + 1)
        login_attempts.record_failure(db_session, "new@x.com")

        assert login_attempts.sweep(db_session) == 1
        db_session.commit()

        assert _row(db_session, "old@x.com") is None
        assert _row(db_session, "new@x.com") is not None


class TestPolicies:
    def test_policy_is_read_from_settings_each_time(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 2)

        login_attempts.record_failure(db_session, "a@x.com")
        assert login_attempts.lockout_remaining(db_session, "a@x.com") is None
        login_attempts.record_failure(db_session, "a@x.com")
        assert login_attempts.lockout_remaining(db_session, "a@x.com") is not None

    def test_reset_counter_uses_its_own_table_and_limit(self, db_session):
        for _ in range(settings.PASSWORD_RESET_MAX_PER_EMAIL):
            reset_attempts_by_email.record_failure(db_session, "a@x.com")

        assert reset_attempts_by_email.lockout_remaining(db_session, "a@x.com") == timedelta(
            minutes=settings.PASSWORD_RESET_EMAIL_WINDOW_MINUTES
        )
        assert login_attempts.lockout_remaining(db_session, "a@x.com") is None

    def test_custom_policy(self, db_session, frozen_clock):
        counter = AttemptCounter(
            LoginAttempt,
            lambda: AttemptPolicy(
                max_attempts=1,
                window=timedelta(minutes=1),
                lockout=timedelta(seconds=30),
            ),
            "custom",
        )

        counter.record_failure(db_session, "a@x.com")
        assert counter.lockout_remaining(db_session, "a@x.com") == timedelta(seconds=30)

        frozen_clock.advance(seconds=31)
        assert counter.lockout_remaining(db_session, "a@x.com") is None
