from app.services.auth_service import AuthService
from app.services.credential_store import CredentialStore
from app.services.mfa_service import MfaService
from app.services.recovery_service import RecoveryService
from app.services.revocation_ledger import RevocationLedger
from app.services.session_service import SessionManager

__all__ = [
    "AuthService",
    "CredentialStore",
    "MfaService",
    "RecoveryService",
    "RevocationLedger",
    "SessionManager",
]
