"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta

from cryptography.fernet import Fernet

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32chars")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENABLE_TOKEN_SWEEP", "false")

# Disable rate limiting for tests by monkey-patching BEFORE imports
from slowapi import Limiter
from slowapi.util import get_remote_address

# Create disabled limiters
_disabled_limiter = Limiter(key_func=get_remote_address, enabled=False)

# Patch the rate_limit module before it's imported elsewhere
import app.core.rate_limit as rate_limit_module
rate_limit_module.limiter = _disabled_limiter
rate_limit_module.public_limiter = _disabled_limiter

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import clock
from app.core.database import Base, enable_sqlite_savepoints
from app.api.deps import get_db, get_notifier
from app.models import ROLE_CLIENT
from app.services.auth_service import AuthService
from app.services.notifier import NotificationError, Notifier
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STRONG_PASSWORD = "Str0ng!Pass"
OTHER_STRONG_PASSWORD = "N3w&Better"
TEST_ORIGIN = "203.0.113.7"


class FrozenClock:
    """Stand-in for app.core.clock.utcnow that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def timestamp(self) -> int:
        return int(clock.to_timestamp(self.now))


class RecordingNotifier(Notifier):
    """Keeps every message so tests can read the raw tokens."""

    def __init__(self):
        self.recovery_messages: list[tuple[str, str]] = []
        self.verification_messages: list[tuple[str, str, str]] = []

    def send_recovery_message(self, email: str, token: str) -> None:
        self.recovery_messages.append((email, token))

    def send_verification_message(self, email: str, display_name: str, token: str) -> None:
        self.verification_messages.append((email, display_name, token))

    @property
    def last_recovery_token(self) -> str:
        return self.recovery_messages[-1][1]

    @property
    def last_verification_token(self) -> str:
        return self.verification_messages[-1][2]


class FailingNotifier(Notifier):
    """Delivery provider that is down."""

    def send_recovery_message(self, email: str, token: str) -> None:
        raise NotificationError("provider unavailable")

    def send_verification_message(self, email: str, display_name: str, token: str) -> None:
        raise NotificationError("provider unavailable")


def totp_code(secret: str, frozen: FrozenClock, steps: int = 0) -> str:
    """Code an authenticator app would show at the frozen time, `steps` x 30s away."""
    return pyotp.TOTP(secret).at(frozen.timestamp(), steps)


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch):
    """Freeze application time for every test."""
    frozen = FrozenClock(datetime(2026, 3, 2, 9, 0, 0))
    monkeypatch.setattr(clock, "utcnow", frozen)
    return frozen


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db_session, notifier):
    """Create a test client with database and notifier overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Factory for users with a password credential."""

    def _make_user(
        email: str = "user@example.com",
        password: str = STRONG_PASSWORD,
        name: str = "Test User",
        role: str = ROLE_CLIENT,
        email_verified: bool = True,
    ):
        return AuthService.create_user(
            db_session,
            email=email,
            password=password,
            name=name,
            role=role,
            email_verified=email_verified,
        )

    return _make_user


@pytest.fixture
def test_user(make_user):
    return make_user()


@pytest.fixture
def test_user_credentials():
    """Sample user login credentials."""
    return {
        "email": "user@example.com",
        "password": STRONG_PASSWORD,
    }
