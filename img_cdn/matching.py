"""Hostname, path and extension matching used by the rewrite policy."""

from __future__ import annotations

import posixpath
import re
from typing import Iterable
from urllib.parse import urlsplit


def is_image_url(url: str, allowed_extensions: Iterable[str]) -> bool:
    """True when the URL path ends in one of ``allowed_extensions``."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    if not path:
        return False
    extension = posixpath.splitext(path)[1].lstrip(".").lower()
    if not extension:
        return False
    return extension in {ext.lower() for ext in allowed_extensions}


def is_domain_allowed(host: str, allowed_domains: Iterable[str]) -> bool:
    """Exact or dot-subdomain match: ``www.example.com`` matches ``example.com``."""
    if not host:
        return False
    host = host.lower()
    for domain in allowed_domains:
        domain = (domain or "").strip().lower()
        if not domain:
            continue
        if host == domain or host.endswith("." + domain):
            return True
    return False


def matches_excluded_pattern(url: str, pattern: str) -> bool:
    """Match ``url`` against an exclusion pattern.

    Patterns containing ``*`` are wildcards and match case-insensitively either
    against the whole URL or anywhere inside it. Plain patterns keep the older
    substring behaviour.
    """
    pattern = (pattern or "").strip()
    if not pattern:
        return False
    if "*" not in pattern:
        return pattern in url
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return (
        re.fullmatch(regex, url, re.IGNORECASE) is not None
        or re.search(regex, url, re.IGNORECASE) is not None
    )
