"""Rendering-pass orchestration: the extension points a host framework calls."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .config import VERSION, SettingsReader
from .context import ContextGuard, UnsafeCheck
from .models import RenderSignals
from .policy import RewritePolicy, UrlCache
from .recovery import lazy_recovery_script
from .rewriter import HtmlMutator

logger = logging.getLogger("img_cdn")

VERSION_HEADER = "X-Image-CDN-Version"


class RenderPass:
    """State for one rendering pass: URL cache, context verdict and mutator.

    Every hook returns its input unchanged when rewriting is disabled, the
    context is unsafe, or (for the single-URL hooks) the mutator is already
    processing a fragment.
    """

    def __init__(
        self,
        settings: SettingsReader,
        site_url: str,
        signals: RenderSignals,
        unsafe_checks: Iterable[UnsafeCheck] = (),
        use_parser: bool = True,
    ) -> None:
        self.settings = settings
        self.policy = RewritePolicy(settings, site_url, UrlCache())
        self.guard = ContextGuard(signals, unsafe_checks)
        self.mutator = HtmlMutator(self.policy, use_parser=use_parser)
        self._script_emitted = False

    def _active(self) -> bool:
        return bool(self.settings.get("enabled")) and not self.guard.is_unsafe()

    def _rewrite_single(self, url: Any) -> Any:
        if not isinstance(url, str) or not url or not self.policy.should_rewrite(url):
            return url
        return self.policy.build_cdn_url(url)

    def on_single_url(self, url: str, attachment_id: Optional[int] = None) -> str:
        if not self._active() or self.mutator.processing:
            return url
        rewritten = self._rewrite_single(url)
        if rewritten != url:
            logger.debug("Rewrote URL for attachment %s: %s -> %s", attachment_id, url, rewritten)
        return rewritten

    def on_image_src(self, image: Sequence[Any]) -> Sequence[Any]:
        """Rewrite the address field (first item) of an image source payload."""
        if not self._active() or self.mutator.processing:
            return image
        if not isinstance(image, (list, tuple)) or not image:
            return image
        rewritten = self._rewrite_single(image[0])
        if rewritten == image[0]:
            return image
        updated = [rewritten, *image[1:]]
        return tuple(updated) if isinstance(image, tuple) else updated

    def on_srcset(self, sources: List[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        if not self._active() or self.mutator.processing:
            return sources
        if not isinstance(sources, list):
            return sources
        updated: List[Mapping[str, Any]] = []
        for source in sources:
            url = source.get("url") if isinstance(source, Mapping) else None
            rewritten = self._rewrite_single(url)
            if rewritten != url:
                source = {**source, "url": rewritten}
            updated.append(source)
        return updated

    def on_attribute_set(self, attributes: Dict[str, str]) -> Dict[str, str]:
        """Augment a single image's attributes with CDN delivery and recovery data."""
        if not self._active():
            return attributes
        src = attributes.get("src")
        if not src:
            return attributes
        delivery = self.mutator.delivery_attributes(src)
        if delivery is None:
            return attributes
        return {**attributes, **delivery}

    def on_markup_fragment(self, html: str) -> str:
        if not self._active():
            return html
        return self.mutator.rewrite(html)

    def on_page_complete(self) -> str:
        """Recovery script and version marker, emitted at most once per pass."""
        if self._script_emitted or not self._active():
            return ""
        self._script_emitted = True
        script = lazy_recovery_script(bool(self.settings.get("debug")))
        return f"{script}\n<!-- Image CDN by img-cdn v{VERSION} -->\n"

    def response_headers(self) -> Dict[str, str]:
        if not self._active():
            return {}
        return {VERSION_HEADER: VERSION}


class CdnPipeline:
    """Composes rendering passes for a site; holds no per-request state itself."""

    def __init__(self, settings: SettingsReader, site_url: str, use_parser: bool = True) -> None:
        self.settings = settings
        self.site_url = site_url
        self.use_parser = use_parser

    def start_pass(
        self,
        signals: Optional[RenderSignals] = None,
        unsafe_checks: Iterable[UnsafeCheck] = (),
    ) -> RenderPass:
        return RenderPass(
            self.settings,
            self.site_url,
            signals or RenderSignals(),
            unsafe_checks=unsafe_checks,
            use_parser=self.use_parser,
        )
