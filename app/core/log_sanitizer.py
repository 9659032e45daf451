"""Redaction of secrets (passwords, tokens, TOTP secrets) from log output."""

import logging
import re
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "authorization",
    "totp",
    "code",
    "api_key",
    "apikey",
    "jwt",
    "database_url",
)

MAX_DEPTH = 5

# key=value / key: value fragments inside free-form messages
_KEY_VALUE_PATTERN = re.compile(
    r"(?P<key>\b[\w-]*(?:" + "|".join(SENSITIVE_KEYS) + r")[\w-]*[\"']?)"
    r"(?P<sep>\s*[=:]\s*)"
    r"(?P<value>\"[^\"]*\"|'[^']*'|[^\s,;&]+)",
    re.IGNORECASE,
)
# JWTs and long hex strings (opaque tokens, hashes)
_JWT_PATTERN = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")
_HEX_PATTERN = re.compile(r"\b[0-9a-fA-F]{32,}\b")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(field in lowered for field in SENSITIVE_KEYS)


def sanitize_text(value: str) -> str:
    """Mask secrets embedded in a free-form string."""
    value = _BEARER_PATTERN.sub(r"\1" + REDACTED, value)
    value = _KEY_VALUE_PATTERN.sub(
        lambda m: f"{m.group('key')}{m.group('sep')}{REDACTED}", value
    )
    value = _JWT_PATTERN.sub(REDACTED, value)
    return _HEX_PATTERN.sub(REDACTED, value)


def sanitize_log_object(obj: Any, depth: int = 0) -> Any:
    """Return a copy of `obj` with sensitive mapping values replaced."""
    if depth > MAX_DEPTH:
        return "[TRUNCATED]"

    if isinstance(obj, str):
        return sanitize_text(obj)

    if isinstance(obj, dict):
        sanitized = {}
        for key, value in obj.items():
            if isinstance(key, str) and is_sensitive_key(key):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_log_object(value, depth + 1)
        return sanitized

    if isinstance(obj, (list, tuple)):
        return type(obj)(sanitize_log_object(item, depth + 1) for item in obj)

    return obj


def sanitize_error_message(error: BaseException) -> str:
    """Describe an exception without leaking secrets carried in its message."""
    message = str(error) or error.__class__.__name__
    return sanitize_text(message)


# Loggers that uvicorn configures with their own handlers and propagate=False
UVICORN_LOGGERS = ("uvicorn", "uvicorn.access")

_traceback_formatter = logging.Formatter()


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs every record before it is formatted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = sanitize_log_object(record.args)
            else:
                record.args = tuple(sanitize_log_object(arg) for arg in record.args)

        if record.exc_info:
            record.exc_text = _traceback_formatter.formatException(record.exc_info)
            record.exc_info = None
        if record.exc_text:
            record.exc_text = sanitize_text(record.exc_text)
        if record.stack_info:
            record.stack_info = sanitize_text(record.stack_info)

        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Broken format string; let the handler report it as usual
            return True
        scrubbed = sanitize_text(message)
        if scrubbed != message:
            # A secret split across msg and args; collapse to the scrubbed text.
            # Records left intact keep their args for formatters that unpack them
            # (uvicorn's access formatter).
            record.msg = scrubbed
            record.args = None
        return True


def install_redacting_filter(logger: logging.Logger | None = None) -> None:
    """
    Attach a RedactingFilter to every handler of `logger`, or by default of
    the root logger and uvicorn's non-propagating loggers.
    """
    if logger is not None:
        targets = [logger]
    else:
        targets = [logging.getLogger()] + [logging.getLogger(name) for name in UVICORN_LOGGERS]
    for target in targets:
        for handler in target.handlers:
            if not any(isinstance(f, RedactingFilter) for f in handler.filters):
                handler.addFilter(RedactingFilter())
