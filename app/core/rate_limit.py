"""Rate limiting configuration using slowapi.

These are coarse per-process request limits in front of the public auth
endpoints. Lockouts and reset quotas that must survive restarts live in the
database (see app.services.attempt_counter).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from app.core.config import settings


def get_client_ip(request: Request) -> str:
    """
    Resolve the caller's address.

    Forwarding headers are only honoured behind a trusted proxy; otherwise
    any client could pick its own origin and dodge per-origin limits.
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return get_remote_address(request)


# Limiter for authenticated routes
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["1000/minute"],
    storage_uri=settings.REDIS_URL or "memory://",
)

# Separate limiter for public routes (stricter)
public_limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri=settings.REDIS_URL or "memory://",
)
