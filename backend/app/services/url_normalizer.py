from __future__ import annotations

import re
from urllib.parse import urlparse

_EXPLICIT_WEB_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
DEFAULT_SCHEME_PREFIX = "https://"


def normalize_url(raw: str) -> str:
    """Turn user input into a fetchable URL without ever rejecting it.

    Input that already names `http`/`https` or is protocol-relative (`//host`)
    is only trimmed; anything else gets an `https://` prefix.
    """
    trimmed = raw.strip()
    if _EXPLICIT_WEB_SCHEME_RE.match(trimmed):
        return trimmed
    if trimmed.startswith("//"):
        return trimmed
    return f"{DEFAULT_SCHEME_PREFIX}{trimmed}"


def is_absolute_web_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
        host = parsed.hostname
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(host)


def url_hostname(value: str) -> str | None:
    """Hostname of an absolute URL, or None when the URL has no scheme or host."""
    try:
        parsed = urlparse(value.strip())
        host = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None
    return host
