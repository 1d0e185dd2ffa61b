"""Eligibility rules and CDN/worker URL construction."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from .config import DEFAULT_IMAGE_EXTENSIONS, SettingsReader
from .matching import is_domain_allowed, is_image_url, matches_excluded_pattern
from .models import ImageReference, RewriteResult
from .urls import build_edge_url, extract_true_origin, normalize_url

logger = logging.getLogger("img_cdn")


class UrlCache:
    """Per-pass memo of built URLs keyed by (kind, source URL).

    Lives for one rendering pass only; it has no eviction because it is bounded
    by the number of distinct images on a page.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], str] = {}

    def get(self, kind: str, url: str) -> Optional[str]:
        return self._entries.get((kind, url))

    def put(self, kind: str, url: str, value: str) -> None:
        self._entries[(kind, url)] = value

    def __len__(self) -> int:
        return len(self._entries)


class RewritePolicy:
    """Decides whether an image reference is rewritten and builds its CDN URL."""

    def __init__(
        self,
        settings: SettingsReader,
        site_url: str,
        cache: Optional[UrlCache] = None,
    ) -> None:
        self.settings = settings
        self.site_url = site_url
        self.cache = cache if cache is not None else UrlCache()

    @property
    def cdn_domain(self) -> str:
        return self.settings.get("cdn_domain") or ""

    @property
    def worker_domain(self) -> str:
        return self.settings.get("worker_domain") or ""

    def is_cdn_url(self, url: str) -> bool:
        domain = self.cdn_domain
        return bool(domain) and isinstance(url, str) and domain in url

    def is_worker_url(self, url: str) -> bool:
        domain = self.worker_domain
        return bool(domain) and isinstance(url, str) and domain in url

    def _host(self, url: str) -> str:
        try:
            return urlsplit(normalize_url(url, self.site_url)).hostname or ""
        except ValueError:
            return ""

    def should_rewrite(self, url: str) -> bool:
        if not url or not isinstance(url, str):
            return False
        if self.is_cdn_url(url) or self.is_worker_url(url):
            return False
        for pattern in self.settings.get("excluded_paths") or []:
            if matches_excluded_pattern(url, pattern):
                return False
        allowed = self.settings.get("allowed_domains") or []
        if allowed and not is_domain_allowed(self._host(url), allowed):
            return False
        extensions = self.settings.get("image_extensions") or DEFAULT_IMAGE_EXTENSIONS
        return is_image_url(url, extensions)

    def _build(self, kind: str, url: str, domain: str) -> str:
        cached = self.cache.get(kind, url)
        if cached is not None:
            return cached
        built = build_edge_url(url, domain, self.site_url)
        if built is None:
            logger.debug("Cannot build %s URL for %r; leaving it unchanged", kind, url)
            return url
        self.cache.put(kind, url, built)
        return built

    def build_cdn_url(self, url: str) -> str:
        """CDN address for ``url``, or ``url`` itself when one cannot be built."""
        return self._build("cdn", url, self.cdn_domain)

    def build_worker_url(self, url: str) -> str:
        return self._build("worker", url, self.worker_domain)

    def true_origin(self, url: str) -> str:
        return extract_true_origin(url, self.cdn_domain, self.worker_domain)

    def resolve(self, raw_url: str) -> ImageReference:
        return ImageReference(
            raw_url=raw_url,
            resolved_absolute_url=normalize_url(self.true_origin(raw_url), self.site_url),
            is_already_cdn=self.is_cdn_url(raw_url),
            is_already_worker=self.is_worker_url(raw_url),
        )

    def rewrite(self, raw_url: str) -> Optional[RewriteResult]:
        """Origin and CDN URL for a reference that may already be edge-addressed.

        Returns ``None`` when the reference is not eligible or no CDN URL can
        be built for it.
        """
        if not raw_url:
            return None
        origin_url = self.resolve(raw_url).resolved_absolute_url
        if not self.should_rewrite(origin_url):
            return None
        cdn_url = self.build_cdn_url(origin_url)
        if cdn_url == origin_url:
            return None
        return RewriteResult(origin_url=origin_url, cdn_url=cdn_url)
