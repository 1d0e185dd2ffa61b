"""Conversions between origin, CDN and worker URLs.

CDN and worker URLs embed the origin positionally::

    https://<edge-domain>/<origin-host>/<origin-path>

so recovering the origin is pure string work and never needs a lookup.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

_ABSOLUTE_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(url: str, site_url: str) -> str:
    """Resolve relative and protocol-relative references against ``site_url``."""
    if _ABSOLUTE_PATTERN.match(url):
        return url
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/"):
        try:
            site = urlsplit(site_url)
            host = site.hostname
        except ValueError:
            return url
        return f"{site.scheme or 'https'}://{host or 'localhost'}{url}"
    return site_url.rstrip("/") + "/" + url.lstrip("/")


def _host_of(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def extract_true_origin(url: str, cdn_domain: str, worker_domain: str) -> str:
    """Recover the origin URL from a CDN or worker URL.

    URLs on any other host come back unchanged, as do malformed edge URLs.
    """
    if not url:
        return url
    host = _host_of(url)
    if not any(domain and domain in host for domain in (cdn_domain, worker_domain)):
        return url
    try:
        path = urlsplit(url).path
    except ValueError:
        return url
    parts = path.strip("/").split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return url
    return f"https://{parts[0]}/{parts[1]}"


def build_edge_url(url: str, edge_domain: str, site_url: str) -> Optional[str]:
    """Address ``url`` through ``edge_domain``; ``None`` when that cannot be done safely."""
    if not edge_domain:
        return None
    normalized = normalize_url(url, site_url)
    try:
        parsed = urlsplit(normalized)
        host = parsed.hostname
    except ValueError:
        return None
    if not host or not parsed.path:
        return None
    return f"https://{edge_domain}/{host}{parsed.path}"
