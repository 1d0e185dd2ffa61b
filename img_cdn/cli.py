"""Command-line entry point for the image CDN rewriter."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from .config import Settings, SettingsError
from .pipeline import CdnPipeline
from .policy import RewritePolicy
from .recovery import lazy_recovery_script
from .warmup import warm_urls

logger = logging.getLogger("img_cdn.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("rewrite", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser, needs_site: bool = True) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the JSON settings file (default: $IMG_CDN_SETTINGS)",
    )
    if needs_site:
        parser.add_argument(
            "--site",
            required=True,
            help="Site origin used to resolve relative image references, e.g. https://example.com",
        )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Rewrite image URLs in rendered HTML so they are served from a CDN.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    rewrite_parser = subparsers.add_parser(
        "rewrite", help="Rewrite image tags in an HTML file and append the recovery script"
    )
    rewrite_parser.add_argument(
        "input",
        nargs="?",
        default="-",
        help="HTML file to rewrite ('-' reads standard input)",
    )
    rewrite_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the result here instead of standard output",
    )
    rewrite_parser.add_argument(
        "--no-script",
        action="store_true",
        help="Do not append the lazy-image recovery script",
    )
    rewrite_parser.add_argument(
        "--patterns",
        action="store_true",
        help="Use pattern matching instead of the HTML parser",
    )
    _add_common_arguments(rewrite_parser)

    url_parser = subparsers.add_parser("url", help="Print the CDN URL for image references")
    url_parser.add_argument("urls", nargs="+", help="Image references to rewrite")
    _add_common_arguments(url_parser)

    script_parser = subparsers.add_parser("script", help="Print the lazy-image recovery script")
    script_parser.add_argument(
        "--debug",
        action="store_true",
        help="Emit the console-logging variant",
    )

    config_parser = subparsers.add_parser("config", help="Show or update the settings file")
    config_parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Update a setting; lists are comma-separated, booleans accept true/false",
    )
    config_parser.add_argument(
        "--use-cloud",
        action="store_true",
        help="Configure the hosted CDN and worker domains and enable rewriting",
    )
    config_parser.add_argument(
        "--reset",
        action="store_true",
        help="Restore default settings",
    )
    _add_common_arguments(config_parser, needs_site=False)

    warm_parser = subparsers.add_parser(
        "warm", help="Request worker variants of origin images so the edge caches them"
    )
    warm_parser.add_argument("urls", nargs="+", help="Origin image URLs to warm")
    warm_parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="Request timeout in seconds",
    )
    _add_common_arguments(warm_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _parse_assignments(assignments: List[str]) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep:
            raise SettingsError(f"Expected KEY=VALUE, got {assignment!r}")
        key = key.strip()
        if key in ("enabled", "debug"):
            updates[key] = value.strip().lower() in ("1", "true", "yes", "on")
        elif key in ("allowed_domains", "excluded_paths", "image_extensions"):
            updates[key] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            updates[key] = value.strip()
    return updates


def _run_rewrite(args: argparse.Namespace, settings: Settings) -> None:
    if args.input == "-":
        html = sys.stdin.read()
    else:
        html = Path(args.input).read_text(encoding="utf-8")

    pipeline = CdnPipeline(settings, args.site, use_parser=not args.patterns)
    render_pass = pipeline.start_pass()
    result = render_pass.on_markup_fragment(html)
    if not args.no_script:
        result += render_pass.on_page_complete()

    if args.output:
        args.output.write_text(result, encoding="utf-8")
        logger.info("Saved rewritten HTML to %s", args.output)
    else:
        sys.stdout.write(result)
        sys.stdout.flush()


def _run_url(args: argparse.Namespace, settings: Settings) -> None:
    render_pass = CdnPipeline(settings, args.site).start_pass()
    for url in args.urls:
        sys.stdout.write(render_pass.on_single_url(url) + "\n")


def _run_config(args: argparse.Namespace, settings: Settings) -> None:
    if args.reset:
        settings.reset()
    if args.use_cloud:
        settings.use_cloud()
    if args.assignments:
        settings.update(_parse_assignments(args.assignments))
    sys.stdout.write(json.dumps(settings.get_all(), indent=2, sort_keys=True) + "\n")


def _run_warm(args: argparse.Namespace, settings: Settings) -> int:
    policy = RewritePolicy(settings, args.site)
    results = warm_urls(args.urls, policy, timeout=args.timeout)
    failures = [result for result in results if not result.ok]
    logger.info(
        "Warmed %d/%d worker URL(s), %d failed",
        len(results) - len(failures),
        len(results),
        len(failures),
    )
    return 1 if failures else 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "script":
        sys.stdout.write(lazy_recovery_script(args.debug) + "\n")
        return

    _configure_logging(args.verbose)
    try:
        settings = Settings.load(args.config)
        if args.command == "rewrite":
            _run_rewrite(args, settings)
        elif args.command == "url":
            _run_url(args, settings)
        elif args.command == "config":
            _run_config(args, settings)
        else:
            sys.exit(_run_warm(args, settings))
    except SettingsError as exc:
        logger.error("%s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
