"""Utility helpers for URLs placed into markup."""

from __future__ import annotations

from urllib.parse import urlsplit

from requests.utils import requote_uri

_SAFE_SCHEMES = {"http", "https"}


def escape_url(url: str) -> str:
    """Return a fully-quoted URL, or ``""`` for schemes that are not http(s)."""
    cleaned = (url or "").strip()
    if not cleaned:
        return ""
    try:
        scheme = urlsplit(cleaned).scheme.lower()
    except ValueError:
        return ""
    if scheme and scheme not in _SAFE_SCHEMES:
        return ""
    return requote_uri(cleaned)
