"""Shared helpers for normalizing feed values."""

import re
from datetime import datetime, UTC
from urllib.parse import urlsplit

DIGITS_RE = re.compile(r"^[0-9]+$")
SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def norm(value: object) -> str:
    """Trim a cell value, treating None as empty."""
    if value is None:
        return ""
    return str(value).strip()


def upper(value: object) -> str:
    return norm(value).upper()


def is_all_digits(value: str) -> bool:
    return bool(DIGITS_RE.match(norm(value)))


def is_absolute_http_url(value: str | None) -> bool:
    """Check that a value is an absolute http(s) URL with a host.

    Accepts:
    - "https://www.amazon.com/dp/B000000001"
    - "HTTP://example.com/a b" (scheme is case-insensitive)

    Rejects relative paths, bare hosts and other schemes.
    """
    text = norm(value)
    if not text:
        return False
    try:
        parts = urlsplit(text)
    except ValueError:
        return False
    return parts.scheme.lower() in {"http", "https"} and bool(parts.netloc)


def normalize_url(value: object) -> str:
    """Return the trimmed URL if it is absolute http(s), otherwise ""."""
    text = norm(value)
    return text if is_absolute_http_url(text) else ""


def coerce_https(url: str) -> str:
    text = norm(url)
    if text[:7].lower() == "http://":
        return "https://" + text[7:]
    return text


def is_safe_segment(value: str) -> bool:
    """Check that a value can be used as a single path segment."""
    return bool(SAFE_SEGMENT_RE.match(value)) and value not in {".", ".."}


def utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()
