"""Redaction module to mask secrets in outputs and logs."""
import re
from typing import Any, Dict

REDACTED = "[REDACTED]"

SECRET_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "access_token_web",
    "refresh_token_web",
    "_vinted_fr_session",
    "password",
    "encoded_secret",
    "authorization",
    "cookie",
    "x-csrf-token",
})

_PATTERNS = [
    # Cookie pairs, in headers and Set-Cookie values
    (re.compile(r'((?:access_token_web|refresh_token_web|_vinted_fr_session)=)([^;,\s]+)', re.IGNORECASE), r'\1' + REDACTED),
    # JSON bodies and key=value pairs
    (re.compile(r'("?(?:access_token|refresh_token)"?\s*[:=]\s*"?)([^"&,\s}]+)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'(Authorization"?\s*[:=]\s*"?Bearer\s+)([^"\s,]+)', re.IGNORECASE), r'\1' + REDACTED),
    # Command lines of the login agent
    (re.compile(r'(--password[=\s]+)(\S+)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'("?password"?\s*[:=]\s*"?)([^"&,\s}]+)', re.IGNORECASE), r'\1' + REDACTED),
]


def redact_string(text: str) -> str:
    """Redact secrets from a string."""
    if not text:
        return text
    result = text
    for pattern, replacement in _PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively redact secrets from a dictionary."""
    if not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        if str(key).lower() in SECRET_KEYS:
            redacted[key] = REDACTED
        else:
            redacted[key] = redact_json(value)
    return redacted


def redact_json(data: Any) -> Any:
    """Redact secrets from JSON-serializable data."""
    if isinstance(data, dict):
        return redact_dict(data)
    elif isinstance(data, list):
        return [redact_json(item) for item in data]
    elif isinstance(data, str):
        return redact_string(data)
    else:
        return data
