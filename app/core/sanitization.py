"""Input sanitization and validation utilities."""

import re
import bleach


# Maximum lengths for different field types
MAX_LENGTHS = {
    "name": 100,
    "email": 255,
    "password": 128,
    "default": 255,
}

# Allowed characters patterns
PATTERNS = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
}


def sanitize_string(
    value: str,
    max_length: int = MAX_LENGTHS["default"],
    strip_html: bool = True,
    allow_newlines: bool = False,
) -> str:
    """
    Sanitize a string input.

    - Strips leading/trailing whitespace
    - Removes or escapes HTML
    - Truncates to max length
    - Optionally removes newlines
    """
    if not value:
        return ""

    # Strip whitespace
    value = value.strip()

    # Remove HTML tags if requested
    if strip_html:
        value = bleach.clean(value, tags=[], strip=True)

    # Remove or normalize newlines
    if not allow_newlines:
        value = " ".join(value.split())

    # Truncate to max length
    if len(value) > max_length:
        value = value[:max_length]

    return value


def sanitize_name(value: str) -> str:
    """Sanitize a person's display name."""
    return sanitize_string(value, max_length=MAX_LENGTHS["name"])


def normalize_email(value: str) -> str:
    """Canonical form used for lookups and counter identities."""
    return (value or "").strip().lower()


def sanitize_email(value: str) -> str:
    """Sanitize and validate email."""
    value = sanitize_string(value, max_length=MAX_LENGTHS["email"]).lower()
    return value


def validate_email(value: str) -> bool:
    """Validate email format."""
    if not value or len(value) > MAX_LENGTHS["email"]:
        return False
    return bool(PATTERNS["email"].match(value))
