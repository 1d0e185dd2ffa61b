"""Server-side warm-up of worker variants for origin images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import requests

from .policy import RewritePolicy

logger = logging.getLogger("img_cdn")

WARM_TIMEOUT = 15


@dataclass
class WarmResult:
    """Outcome of one warm-up request."""

    origin_url: str
    worker_url: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and self.status_code < 400


def warm_urls(
    urls: Iterable[str],
    policy: RewritePolicy,
    session: Optional[requests.Session] = None,
    timeout: float = WARM_TIMEOUT,
) -> List[WarmResult]:
    """Request the worker URL of every rewritable origin URL so the edge caches it."""
    session = session or requests.Session()
    results: List[WarmResult] = []
    seen = set()

    for url in urls:
        origin_url = policy.resolve(url).resolved_absolute_url
        if origin_url in seen:
            continue
        seen.add(origin_url)
        if not policy.should_rewrite(origin_url):
            logger.debug("Skipping %s: not eligible for the CDN", origin_url)
            continue
        worker_url = policy.build_worker_url(origin_url)
        if worker_url == origin_url:
            logger.warning("Skipping %s: no worker URL can be built", origin_url)
            continue

        result = WarmResult(origin_url=origin_url, worker_url=worker_url)
        try:
            resp = session.get(worker_url, timeout=timeout)
            result.status_code = resp.status_code
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to warm %s via %s: %s", origin_url, worker_url, exc)
            result.error = str(exc)
        else:
            logger.info("Warmed %s (HTTP %s)", worker_url, resp.status_code)
        results.append(result)
    return results
