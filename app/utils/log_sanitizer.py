import logging
import re
from typing import Iterable

from flask import current_app

_SENSITIVE_KEYWORDS = (
    'password',
    'passwd',
    'secret',
    'token',
    'api_key',
    'authorization',
)

_SENSITIVE_REGEXES = [
    re.compile(rf"(?i)({keyword}\s*[=:]\s*)([^\s,;]+)") for keyword in _SENSITIVE_KEYWORDS
]
_BEARER_REGEX = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)")


def _resolve_log_level(level: str) -> int:
    """Map string level names to logging module constants."""
    try:
        return int(level)
    except (TypeError, ValueError):
        return getattr(logging, (level or '').upper(), logging.INFO)


def sanitize_for_logging(value: str, extra_secrets: Iterable[str] | None = None) -> str:
    """Mask sensitive information like passwords or tokens in log messages."""
    if not isinstance(value, str) or not value:
        return value

    sanitized = _BEARER_REGEX.sub(lambda m: f"{m.group(1)}<redacted>", value)
    for pattern in _SENSITIVE_REGEXES:
        sanitized = pattern.sub(lambda m: f"{m.group(1)}<redacted>", sanitized)

    if extra_secrets:
        for secret in extra_secrets:
            if secret:
                sanitized = sanitized.replace(secret, '<redacted>')

    return sanitized


def log(level: str, message: str, *args, extra_secrets: Iterable[str] | None = None, **kwargs):
    """Log through the app logger after masking secrets in the message and string args."""
    sanitized_args = tuple(
        sanitize_for_logging(arg, extra_secrets) if isinstance(arg, str) else arg
        for arg in args
    )
    current_app.logger.log(_resolve_log_level(level), sanitize_for_logging(message, extra_secrets),
                           *sanitized_args, **kwargs)
