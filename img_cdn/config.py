"""Configuration objects and constants for the image CDN rewriter."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

logger = logging.getLogger("img_cdn")

VERSION = "0.0.8"
SETTINGS_ENV = "IMG_CDN_SETTINGS"

CLOUD_CDN_DOMAIN = "wp.img.pro"
CLOUD_WORKER_DOMAIN = "fetch.wp.img.pro"

DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "avif", "svg")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "enabled": False,
    "cdn_domain": "",
    "worker_domain": "",
    "allowed_domains": [],
    "excluded_paths": [],
    "debug": False,
    "image_extensions": list(DEFAULT_IMAGE_EXTENSIONS),
}

_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_PORT_PATTERN = re.compile(r":\d+$")
_DOTS_PATTERN = re.compile(r"\.{2,}")
_DOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9\-.]*[a-z0-9])?$")


class SettingsError(Exception):
    """Raised when a settings file cannot be read or written."""


class SettingsReader(Protocol):
    """Read-only accessor the rewriting core depends on."""

    def get(self, key: str, default: Any = None) -> Any:
        ...


def sanitize_domain(value: str) -> str:
    """Reduce user input to a bare lowercase hostname, or ``""`` if invalid."""
    domain = _SCHEME_PATTERN.sub("", (value or "").strip())
    domain = domain.split("/", 1)[0]
    domain = _PORT_PATTERN.sub("", domain)
    domain = _DOTS_PATTERN.sub(".", domain.strip(".")).lower()
    if domain and not _DOMAIN_PATTERN.match(domain):
        return ""
    return domain


def _split_lines(value: Union[str, Iterable[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.splitlines()
    else:
        items = list(value)
    return [str(item).strip() for item in items if item and str(item).strip()]


class Settings:
    """JSON-backed key-value settings store with a validation layer."""

    def __init__(
        self,
        values: Optional[Dict[str, Any]] = None,
        path: Optional[Path] = None,
    ) -> None:
        self.path = path
        self._values: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        if values:
            self._values.update(self.validate(values))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        """Read settings from ``path`` or the ``IMG_CDN_SETTINGS`` override."""
        if path is None:
            override = os.getenv(SETTINGS_ENV)
            if override:
                path = Path(override).expanduser()
        if path is None:
            return cls()
        if not path.exists():
            logger.warning("Settings file %s does not exist; using defaults", path)
            return cls(path=path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SettingsError(f"Failed to read settings from {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise SettingsError(f"Settings file {path} must contain a JSON object")
        logger.debug("Loaded settings from %s", path)
        return cls(raw, path=path)

    def save(self) -> None:
        if self.path is None:
            raise SettingsError("Settings have no file path to save to")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._values, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
        except OSError as exc:
            raise SettingsError(f"Failed to write settings to {self.path}: {exc}") from exc
        logger.debug("Saved settings to %s", self.path)

    def get_all(self) -> Dict[str, Any]:
        return dict(self._values)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return self._values[key]
        if default is not None:
            return default
        return DEFAULT_SETTINGS.get(key)

    def validate(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Coerce recognised keys into their canonical form; unknown keys are dropped."""
        validated: Dict[str, Any] = {}
        for flag in ("enabled", "debug"):
            if flag in raw:
                validated[flag] = bool(raw[flag])
        for key in ("cdn_domain", "worker_domain"):
            if key in raw:
                validated[key] = sanitize_domain(str(raw[key] or ""))
        if "allowed_domains" in raw:
            domains = [sanitize_domain(item) for item in _split_lines(raw["allowed_domains"])]
            validated["allowed_domains"] = [domain for domain in domains if domain]
        if "excluded_paths" in raw:
            validated["excluded_paths"] = _split_lines(raw["excluded_paths"])
        if "image_extensions" in raw:
            extensions = [
                item.lower().lstrip(".") for item in _split_lines(raw["image_extensions"])
            ]
            validated["image_extensions"] = [ext for ext in extensions if ext]
        return validated

    def update(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and merge ``raw``; persist when the store has a path."""
        validated = self.validate(raw)
        self._values.update(validated)
        if self.path is not None:
            self.save()
        return validated

    def reset(self) -> None:
        self._values = dict(DEFAULT_SETTINGS)
        if self.path is not None:
            self.save()

    def use_cloud(self) -> None:
        """Point the store at the hosted CDN and worker and enable rewriting."""
        self.update(
            {
                "cdn_domain": CLOUD_CDN_DOMAIN,
                "worker_domain": CLOUD_WORKER_DOMAIN,
                "enabled": True,
            }
        )
