"""Decides whether the current rendering context may be rewritten."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Tuple

from .models import RenderSignals

logger = logging.getLogger("img_cdn")

UnsafeCheck = Callable[[], bool]

_SIGNAL_REASONS = (
    ("rest_api", "API request"),
    ("ajax", "background request"),
    ("cron", "scheduled job"),
    ("cli", "command-line invocation"),
    ("xmlrpc", "remote publishing request"),
    ("autosave", "autosave"),
    ("installing", "install or upgrade"),
)


class ContextGuard:
    """Caches the unsafe-context verdict for one rendering pass.

    Admin screens, API and background requests, cron, CLI, remote publishing,
    autosave and install mode all consume untouched origin URLs. Extra checks
    registered by the host can mark further contexts unsafe. The first
    evaluation wins for the rest of the pass.
    """

    def __init__(
        self,
        signals: RenderSignals,
        unsafe_checks: Iterable[UnsafeCheck] = (),
    ) -> None:
        self.signals = signals
        self.unsafe_checks: Tuple[UnsafeCheck, ...] = tuple(unsafe_checks)
        self._verdict: Optional[bool] = None

    def _reason(self) -> Optional[str]:
        if self.signals.admin and not self.signals.admin_allow_rewrite:
            return "admin screen"
        for attribute, reason in _SIGNAL_REASONS:
            if getattr(self.signals, attribute):
                return reason
        for check in self.unsafe_checks:
            try:
                if check():
                    return "host override"
            except Exception:  # pylint: disable=broad-except
                logger.warning("Unsafe-context check %r failed; treating context as unsafe", check, exc_info=True)
                return "failed host override"
        return None

    def is_unsafe(self) -> bool:
        if self._verdict is None:
            reason = self._reason()
            self._verdict = reason is not None
            if reason:
                logger.debug("Rewriting disabled for this pass: %s", reason)
        return self._verdict
