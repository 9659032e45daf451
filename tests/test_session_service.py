"""Tests for login, refresh rotation, logout and access-token authentication."""

import pytest

from app.core.config import settings
from app.core.exceptions import (
    AccountLockedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    TokenExpiredError,
)
from app.core.security import create_access_token, hash_token
from app.models import RefreshToken, RevokedAccessToken
from app.services.session_service import Authenticated, MfaChallenge, SessionManager
from tests.conftest import STRONG_PASSWORD


def _refresh_rows(db, user_id):
    return db.query(RefreshToken).filter(RefreshToken.user_id == user_id).all()


class TestLogin:
    def test_success_returns_token_pair(self, db_session, test_user):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)

        assert isinstance(outcome, Authenticated)
        assert outcome.user.id == test_user.id
        session = SessionManager.authenticate(db_session, outcome.access_token)
        assert session.user.id == test_user.id

        rows = _refresh_rows(db_session, test_user.id)
        assert len(rows) == 1
        assert rows[0].token_hash == hash_token(outcome.refresh_token)
        assert rows[0].token_hash != outcome.refresh_token

    def test_email_is_case_insensitive(self, db_session, test_user):
        outcome = SessionManager.login(db_session, "  USER@Example.com ", STRONG_PASSWORD)
        assert isinstance(outcome, Authenticated)

    def test_wrong_password_and_unknown_email_look_the_same(self, db_session, test_user):
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            SessionManager.login(db_session, "user@example.com", "Wr0ng!Pass")
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            SessionManager.login(db_session, "nobody@example.com", STRONG_PASSWORD)

        assert wrong_password.value.detail == unknown_email.value.detail
        assert wrong_password.value.status_code == unknown_email.value.status_code == 401

    def test_unverified_email_blocked_after_password_check(self, db_session, make_user):
        make_user(email="new@example.com", email_verified=False)

        with pytest.raises(InvalidCredentialsError):
            SessionManager.login(db_session, "new@example.com", "Wr0ng!Pass")
        with pytest.raises(EmailNotVerifiedError):
            SessionManager.login(db_session, "new@example.com", STRONG_PASSWORD)

    def test_verification_requirement_can_be_switched_off(
        self, db_session, make_user, monkeypatch
    ):
        monkeypatch.setattr(settings, "REQUIRE_EMAIL_VERIFICATION", False)
        make_user(email="new@example.com", email_verified=False)

        outcome = SessionManager.login(db_session, "new@example.com", STRONG_PASSWORD)
        assert isinstance(outcome, Authenticated)


class TestLockout:
    def test_lockout_scenario(self, db_session, make_user, frozen_clock):
        """Five wrong passwords lock a@x.com; even the right password is refused until expiry."""
        make_user(email="a@x.com")

        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with pytest.raises(InvalidCredentialsError):
                SessionManager.login(db_session, "a@x.com", "Wr0ng!Pass")

        with pytest.raises(AccountLockedError) as exc_info:
            SessionManager.login(db_session, "a@x.com", STRONG_PASSWORD)
        assert exc_info.value.retry_after_minutes == settings.LOGIN_LOCKOUT_MINUTES
        assert exc_info.value.status_code == 423

        frozen_clock.advance(minutes=settings.LOGIN_LOCKOUT_MINUTES, seconds=1)

        assert isinstance(
            SessionManager.login(db_session, "a@x.com", STRONG_PASSWORD), Authenticated
        )

    def test_success_resets_the_counter(self, db_session, make_user):
        make_user(email="a@x.com")

        for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
            with pytest.raises(InvalidCredentialsError):
                SessionManager.login(db_session, "a@x.com", "Wr0ng!Pass")
        SessionManager.login(db_session, "a@x.com", STRONG_PASSWORD)

        for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
            with pytest.raises(InvalidCredentialsError):
                SessionManager.login(db_session, "a@x.com", "Wr0ng!Pass")

        assert isinstance(
            SessionManager.login(db_session, "a@x.com", STRONG_PASSWORD), Authenticated
        )

    def test_unknown_email_is_locked_too(self, db_session):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with pytest.raises(InvalidCredentialsError):
                SessionManager.login(db_session, "ghost@x.com", "Wr0ng!Pass")

        with pytest.raises(AccountLockedError):
            SessionManager.login(db_session, "ghost@x.com", "Wr0ng!Pass")


class TestRefresh:
    def test_rotation_invalidates_old_token(self, db_session, test_user, frozen_clock):
        first = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(minutes=1)

        second = SessionManager.refresh(db_session, first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert SessionManager.authenticate(db_session, second.access_token).user.id == test_user.id
        assert len(_refresh_rows(db_session, test_user.id)) == 1

        with pytest.raises(InvalidTokenError):
            SessionManager.refresh(db_session, first.refresh_token)

        third = SessionManager.refresh(db_session, second.refresh_token)
        assert third.refresh_token not in (first.refresh_token, second.refresh_token)

    def test_unknown_token(self, db_session, test_user):
        with pytest.raises(InvalidTokenError):
            SessionManager.refresh(db_session, "f" * 128)

    def test_expired_token_is_deleted(self, db_session, test_user, frozen_clock):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS, seconds=1)

        with pytest.raises(TokenExpiredError):
            SessionManager.refresh(db_session, outcome.refresh_token)

        assert _refresh_rows(db_session, test_user.id) == []

    def test_rotation_extends_expiry(self, db_session, test_user, frozen_clock):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS - 1)

        rotated = SessionManager.refresh(db_session, outcome.refresh_token)
        frozen_clock.advance(days=2)

        assert isinstance(SessionManager.refresh(db_session, rotated.refresh_token), Authenticated)

    def test_each_login_is_a_separate_device(self, db_session, test_user, frozen_clock):
        SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(seconds=5)
        SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)

        assert len(_refresh_rows(db_session, test_user.id)) == 2

    def test_expired_refresh_tokens_swept_on_login(self, db_session, test_user, frozen_clock):
        SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS, seconds=1)
        SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)

        assert len(_refresh_rows(db_session, test_user.id)) == 1


class TestLogoutAndRevocation:
    def test_logout_revokes_access_and_refresh(self, db_session, test_user, frozen_clock):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(minutes=1)

        SessionManager.logout(db_session, outcome.access_token, test_user.id)

        with pytest.raises(InvalidTokenError):
            SessionManager.authenticate(db_session, outcome.access_token)
        with pytest.raises(InvalidTokenError):
            SessionManager.refresh(db_session, outcome.refresh_token)
        assert db_session.query(RevokedAccessToken).count() == 1

    def test_watermark_kills_other_devices(self, db_session, test_user, frozen_clock):
        laptop = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(minutes=1)
        phone = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(minutes=1)

        SessionManager.logout(db_session, laptop.access_token, test_user.id)

        with pytest.raises(InvalidTokenError):
            SessionManager.authenticate(db_session, phone.access_token)
        with pytest.raises(InvalidTokenError):
            SessionManager.refresh(db_session, phone.refresh_token)

    def test_fresh_login_after_logout_is_accepted(self, db_session, test_user, frozen_clock):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        SessionManager.logout(db_session, outcome.access_token, test_user.id)
        frozen_clock.advance(seconds=1)

        fresh = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)

        assert SessionManager.authenticate(db_session, fresh.access_token).user.id == test_user.id

    def test_revoke_all_sessions(self, db_session, test_user, frozen_clock):
        first = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(seconds=1)
        second = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(seconds=1)

        assert SessionManager.revoke_all_sessions(db_session, test_user.id) == 2

        for outcome in (first, second):
            with pytest.raises(InvalidTokenError):
                SessionManager.authenticate(db_session, outcome.access_token)
        assert _refresh_rows(db_session, test_user.id) == []

    def test_expired_ledger_rows_swept_on_logout(self, db_session, test_user, frozen_clock):
        first = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        SessionManager.logout(db_session, first.access_token, test_user.id)

        frozen_clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES + 1)
        second = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        SessionManager.logout(db_session, second.access_token, test_user.id)

        rows = db_session.query(RevokedAccessToken).all()
        assert [row.token_hash for row in rows] == [hash_token(second.access_token)]


class TestAuthenticate:
    def test_expired_access_token(self, db_session, test_user, frozen_clock):
        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)
        frozen_clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES, seconds=1)

        with pytest.raises(TokenExpiredError):
            SessionManager.authenticate(db_session, outcome.access_token)

    def test_token_for_deleted_user(self, db_session, test_user):
        token = create_access_token(str(test_user.id), test_user.email, test_user.role)
        db_session.delete(test_user)
        db_session.commit()

        with pytest.raises(InvalidTokenError):
            SessionManager.authenticate(db_session, token)

    def test_non_uuid_subject(self, db_session):
        token = create_access_token("not-a-uuid", "user@example.com", "client")

        with pytest.raises(InvalidTokenError):
            SessionManager.authenticate(db_session, token)


class TestMfaGate:
    def test_mfa_enabled_account_gets_challenge_only(self, db_session, test_user):
        from app.models import MfaEnrollment

        db_session.add(MfaEnrollment(user_id=test_user.id, secret_encrypted="x", enabled=True))
        db_session.commit()

        outcome = SessionManager.login(db_session, "user@example.com", STRONG_PASSWORD)

        assert isinstance(outcome, MfaChallenge)
        assert outcome.mfa_token
        assert _refresh_rows(db_session, test_user.id) == []
        with pytest.raises(InvalidTokenError):
            SessionManager.authenticate(db_session, outcome.mfa_token)
