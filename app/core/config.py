from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password hashing
    BCRYPT_ROUNDS: int = 12

    # Login brute-force protection
    MAX_LOGIN_ATTEMPTS: int = 5
    LOGIN_ATTEMPT_WINDOW_MINUTES: int = 15
    LOGIN_LOCKOUT_MINUTES: int = 15
    REQUIRE_EMAIL_VERIFICATION: bool = True

    # Password reset
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = 10
    PASSWORD_RESET_MAX_PER_EMAIL: int = 3
    PASSWORD_RESET_EMAIL_WINDOW_MINUTES: int = 60
    PASSWORD_RESET_MAX_PER_ORIGIN: int = 10
    PASSWORD_RESET_ORIGIN_WINDOW_MINUTES: int = 60

    # Email verification
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24

    # MFA (TOTP)
    MFA_ISSUER: str = "Keyward"
    MFA_TOKEN_EXPIRE_MINUTES: int = 5
    MFA_VALID_WINDOW: int = 2  # adjacent 30s steps accepted on each side

    # Fernet key used to encrypt MFA secrets at rest
    ENCRYPTION_KEY: str = ""

    # Honour X-Forwarded-For / X-Real-IP when resolving the client origin
    TRUST_PROXY_HEADERS: bool = False

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Redis (optional, for distributed request rate limiting)
    REDIS_URL: Optional[str] = None

    # Expired token / counter garbage collection
    ENABLE_TOKEN_SWEEP: bool = True
    TOKEN_SWEEP_INTERVAL_MINUTES: int = 30

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY) < 32:
            errors.append("SECRET_KEY must be set and at least 32 characters")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY must be set to store MFA secrets")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
