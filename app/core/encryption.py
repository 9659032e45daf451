"""Fernet encryption for MFA secrets stored in mfa_enrollments."""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings
from app.core.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_fernet_key: Optional[str] = None


def get_fernet() -> Fernet:
    """Fernet instance for the configured ENCRYPTION_KEY, rebuilt if the key changes."""
    global _fernet, _fernet_key
    key = settings.ENCRYPTION_KEY
    if not key:
        raise ValueError(
            "ENCRYPTION_KEY is not set. Generate one with: "
            "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )
    if _fernet is None or key != _fernet_key:
        _fernet = Fernet(key.encode())
        _fernet_key = key
    return _fernet


def encrypt_secret(secret: str) -> str:
    """Encrypt a base32 TOTP secret for storage."""
    return get_fernet().encrypt(secret.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    """
    Recover a stored TOTP secret.

    A key rotation without re-encrypting enrollments makes every MFA login
    fail, so it surfaces as ServiceUnavailableError rather than a bad code.
    """
    try:
        return get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("Stored MFA secret could not be decrypted; check ENCRYPTION_KEY")
        raise ServiceUnavailableError("MFA secret store")
