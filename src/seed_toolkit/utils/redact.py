from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

REDACTED = "[REDACTED]"
MAX_ERROR_MESSAGE = 500
MAX_ARG_VALUE = 1000
MAX_SUMMARY = 200

_FORBIDDEN_KEY_RE = re.compile(
    r"SECRET|PASSWORD|PASSWD|TOKEN|KEY|COOKIE|AUTHORIZATION|CREDENTIAL",
    re.IGNORECASE,
)
_DB_KEY_RE = re.compile(r"DATABASE_URL|DB_URL|DSN", re.IGNORECASE)
_URL_CREDENTIALS_RE = re.compile(
    r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/\s:@]+(?::[^/\s@]*)?@"
)
_QUERY_SECRET_RE = re.compile(
    r"(?P<key>\b(?:password|passwd|pwd|token|secret|api[_-]?key|access[_-]?key)=)[^&\s]+",
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(?P<key>\bbearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


def scrub_message(text: str) -> str:
    """Strip credentials from free text before it reaches any output stream."""
    scrubbed = _URL_CREDENTIALS_RE.sub(r"\g<scheme>***:***@", text)
    scrubbed = _QUERY_SECRET_RE.sub(r"\g<key>" + REDACTED, scrubbed)
    scrubbed = _BEARER_RE.sub(r"\g<key>" + REDACTED, scrubbed)
    return scrubbed


def mask_database_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return REDACTED
    if not parts.scheme or not parts.hostname:
        return scrub_message(url)
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://***:***@{host}{parts.path}"


def redact_value(key: str, value: Any) -> Any:
    if _DB_KEY_RE.search(key) and isinstance(value, str):
        return mask_database_url(value)
    if _FORBIDDEN_KEY_RE.search(key):
        return REDACTED
    if isinstance(value, Mapping):
        return redact_args(value)
    if isinstance(value, str):
        return truncate(scrub_message(value), MAX_ARG_VALUE)
    return value


def redact_args(args: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key): redact_value(str(key), value) for key, value in args.items()}


def sanitize_error(
    exc: BaseException, code: Optional[str] = None
) -> Dict[str, Any]:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return {
        "code": code or getattr(exc, "code", None) or exc.__class__.__name__,
        "message": truncate(scrub_message(str(message)), MAX_ERROR_MESSAGE),
    }


__all__ = [
    "MAX_ARG_VALUE",
    "MAX_ERROR_MESSAGE",
    "MAX_SUMMARY",
    "REDACTED",
    "mask_database_url",
    "redact_args",
    "redact_value",
    "sanitize_error",
    "scrub_message",
    "truncate",
]
