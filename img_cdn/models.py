"""Data models used throughout the rewriting pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ImageReference:
    """A single image reference found in a hook payload or markup node."""

    raw_url: str
    resolved_absolute_url: str
    is_already_cdn: bool = False
    is_already_worker: bool = False


@dataclass
class RewriteResult:
    """Origin URL paired with its CDN address; origin never points at the CDN or worker."""

    origin_url: str
    cdn_url: str


@dataclass
class RenderSignals:
    """Flags describing the context the host is rendering in."""

    admin: bool = False
    rest_api: bool = False
    ajax: bool = False
    cron: bool = False
    cli: bool = False
    xmlrpc: bool = False
    autosave: bool = False
    installing: bool = False
    admin_allow_rewrite: bool = False
