"""HTML mutation: point image tags at the CDN and attach recovery metadata."""

from __future__ import annotations

import html
import logging
import re
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from .policy import RewritePolicy
from .recovery import onerror_handler, onload_handler
from .utils import escape_url

logger = logging.getLogger("img_cdn")

IMAGE_TAGS = ("img", "amp-img", "amp-anim")
PROCESSED_MARKER = "data-original-src"

# Groups: tag name, attributes before src, src value, attributes after src.
_TAG_PATTERN = re.compile(
    r"<(img|amp-img|amp-anim)\s+([^>]*?\s+)?src=[\"']([^\"']+)[\"']([^>]*)>",
    re.IGNORECASE | re.DOTALL,
)
_START_TAG = re.compile(r"<[^\s/>]+(?:\"[^\"]*\"|'[^']*'|[^\"'>])*>")
# Groups: attribute name, attribute value (quotes included).
_ATTRIBUTE = re.compile(r"([^\s\"'>/=]+)(?:\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s\"'>]+))?")
_TAG_CLOSE = re.compile(r"\s*/?>\Z")
_NEWLINE = re.compile(r"\n")


def _quoted(value: str) -> str:
    return '"' + html.escape(value, quote=True) + '"'


def _start_tag_span(content: str, line_offsets: List[int], tag: Tag) -> Optional[Tuple[int, int]]:
    """Locate ``tag``'s start tag in the source ``content``."""
    if tag.sourceline is None or tag.sourcepos is None or tag.sourceline > len(line_offsets):
        return None
    start = line_offsets[tag.sourceline - 1] + tag.sourcepos
    opening = "<" + tag.name
    if content[start : start + len(opening)].lower() != opening:
        return None
    match = _START_TAG.match(content, start)
    if match is None:
        return None
    return start, match.end()


def _splice_attributes(tag_text: str, name_length: int, attributes: Dict[str, str]) -> Optional[str]:
    """Swap the ``src`` value and append the remaining attributes before the tag closes."""
    for match in _ATTRIBUTE.finditer(tag_text, name_length + 1):
        if match.group(1).lower() == "src" and match.group(2):
            tag_text = tag_text[: match.start(2)] + _quoted(attributes["src"]) + tag_text[match.end(2) :]
            break
    else:
        return None
    extra = "".join(f" {name}={_quoted(value)}" for name, value in attributes.items() if name != "src")
    close = _TAG_CLOSE.search(tag_text)
    if close is None:
        return None
    return tag_text[: close.start()] + extra + tag_text[close.start() :]


class HtmlMutator:
    """Rewrites image tags in markup fragments.

    Only the start tags of rewritten images change; every other byte of the
    fragment is returned as it came in. A mutator is owned by a single
    rendering pass. While it is processing, any nested call (the mutator's own
    output coming back through another hook) returns its input untouched.
    """

    def __init__(self, policy: RewritePolicy, use_parser: bool = True) -> None:
        self.policy = policy
        self.use_parser = use_parser
        self._processing = False

    @property
    def processing(self) -> bool:
        return self._processing

    @contextmanager
    def _processing_scope(self) -> Iterator[None]:
        self._processing = True
        try:
            yield
        finally:
            self._processing = False

    def delivery_attributes(self, src: str) -> Optional[Dict[str, str]]:
        """CDN ``src`` plus recovery attributes, or ``None`` if ``src`` is not rewritten."""
        result = self.policy.rewrite(src)
        if result is None:
            return None
        logger.debug(
            "Rewriting image: input_src=%s, origin=%s, cdn=%s",
            src,
            result.origin_url,
            result.cdn_url,
        )
        return {
            "src": escape_url(result.cdn_url),
            PROCESSED_MARKER: escape_url(result.origin_url),
            "data-worker-domain": self.policy.worker_domain,
            "onload": onload_handler(),
            "onerror": onerror_handler(bool(self.policy.settings.get("debug"))),
        }

    def rewrite(self, content: str) -> str:
        if self._processing or not content:
            return content
        with self._processing_scope():
            if self.use_parser:
                try:
                    return self._rewrite_with_parser(content)
                except Exception:  # pylint: disable=broad-except
                    logger.warning(
                        "HTML parser failed on fragment; falling back to pattern matching",
                        exc_info=True,
                    )
            try:
                return self._rewrite_with_patterns(content)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error rewriting fragment; leaving it unchanged")
                return content

    def _rewrite_with_parser(self, content: str) -> str:
        soup = BeautifulSoup(content, "html.parser", multi_valued_attributes=None)
        line_offsets = [0] + [match.end() for match in _NEWLINE.finditer(content)]
        edits = []
        for tag in soup.find_all(list(IMAGE_TAGS)):
            if tag.get(PROCESSED_MARKER):
                continue
            src = tag.get("src")
            if not src:
                continue
            span = _start_tag_span(content, line_offsets, tag)
            if span is None:
                logger.debug("Could not locate <%s> at line %s; leaving it unchanged", tag.name, tag.sourceline)
                continue
            attributes = self.delivery_attributes(src)
            if attributes is None:
                continue
            start, end = span
            replacement = _splice_attributes(content[start:end], len(tag.name), attributes)
            if replacement is not None:
                edits.append((start, end, replacement))

        if not edits:
            return content
        pieces = []
        cursor = 0
        for start, end, replacement in edits:
            pieces.append(content[cursor:start])
            pieces.append(replacement)
            cursor = end
        pieces.append(content[cursor:])
        return "".join(pieces)

    def _rewrite_with_patterns(self, content: str) -> str:
        def replace(match: "re.Match[str]") -> str:
            tag_text = match.group(0)
            if PROCESSED_MARKER in tag_text.lower():
                return tag_text
            tag_name, before, src, after = match.groups()
            attributes = self.delivery_attributes(src)
            if attributes is None:
                return tag_text
            extra = "".join(
                f" {name}={_quoted(value)}" for name, value in attributes.items() if name != "src"
            )
            prefix = " " + before if before else " "
            return f"<{tag_name}{prefix}src={_quoted(attributes['src'])}{extra}{after}>"

        return _TAG_PATTERN.sub(replace, content)
