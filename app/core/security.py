from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4
import hashlib
import secrets

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core import clock
from app.core.config import settings
from app.core.exceptions import InvalidTokenError, TokenExpiredError

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Token type constants
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_MFA_PENDING = "mfa_pending"

# Opaque tokens (refresh, reset, verification) never carry less entropy than this
MIN_OPAQUE_TOKEN_BYTES = 32
REFRESH_TOKEN_BYTES = 64

_dummy_hash: Optional[str] = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password.

    Malformed or unrecognised hashes verify as False instead of raising.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt with a fresh salt."""
    return pwd_context.hash(password)


def verify_dummy_password(plain_password: str) -> None:
    """Spend one bcrypt verification when there is no stored hash to check."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = get_password_hash(secrets.token_urlsafe(16))
    verify_password(plain_password, _dummy_hash)


def hash_token(token: str) -> str:
    """Create SHA-256 hash of a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_opaque_token(num_bytes: int = MIN_OPAQUE_TOKEN_BYTES) -> str:
    """Return a hex string of `num_bytes` cryptographically secure random bytes."""
    if num_bytes < MIN_OPAQUE_TOKEN_BYTES:
        raise ValueError(f"Opaque tokens need at least {MIN_OPAQUE_TOKEN_BYTES} bytes")
    return secrets.token_hex(num_bytes)


def _encode(claims: dict, token_type: str, expires_delta: timedelta) -> str:
    now = clock.utcnow()
    to_encode = claims.copy()
    to_encode.update({
        # Sub-second iat so a login right after a logout clears the watermark
        "iat": clock.to_timestamp(now),
        "exp": int(clock.to_timestamp(now + expires_delta)),
        "type": token_type,
        "jti": str(uuid4()),
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token for an authenticated user."""
    return _encode(
        {"sub": str(user_id), "email": email, "role": role},
        TOKEN_TYPE_ACCESS,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_mfa_token(user_id: str, email: str, role: str) -> str:
    """
    Create the short-lived assertion handed out after a correct password
    on an MFA-enabled account. It grants nothing except a TOTP attempt.
    """
    return _encode(
        {"sub": str(user_id), "email": email, "role": role, "mfa_pending": True},
        TOKEN_TYPE_MFA_PENDING,
        timedelta(minutes=settings.MFA_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str, expected_type: str = TOKEN_TYPE_ACCESS) -> dict:
    """
    Verify a signed token and return its claims.

    Only the configured algorithm is accepted. Expiry is checked against the
    application clock rather than the library's wall clock.

    Raises:
        InvalidTokenError: bad signature, foreign algorithm, wrong type or
            missing subject/email.
        TokenExpiredError: the token's `exp` has passed.
    """
    try:
        header = jwt.get_unverified_header(token)
        if header.get("alg") != settings.ALGORITHM:
            raise InvalidTokenError()
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise InvalidTokenError()

    if payload.get("type") != expected_type:
        raise InvalidTokenError()
    if not payload.get("sub") or not payload.get("email"):
        raise InvalidTokenError()

    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or not isinstance(payload.get("iat"), (int, float)):
        raise InvalidTokenError()
    if exp <= clock.to_timestamp(clock.utcnow()):
        raise TokenExpiredError()

    return payload


def issued_at(claims: dict) -> datetime:
    return clock.from_timestamp(claims["iat"])


def expires_at(claims: dict) -> datetime:
    return clock.from_timestamp(claims["exp"])


def get_unverified_expiry(token: str) -> Optional[datetime]:
    """Read a token's `exp` without checking its signature."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return clock.from_timestamp(exp)
