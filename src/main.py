# src/main.py — v2
"""CLI entry point — cache-stats, cache-invalidate, depths commands.

Usage:
    fitscore cache-stats
    fitscore cache-invalidate <identifier>
    fitscore depths
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from fitscore.version import __version__

if TYPE_CHECKING:
    from fitscore.config.settings import Settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _load_settings(args.verbose)
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fitscore",
        description=f"fitscore v{__version__} — profile fit scoring pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    p_stats = subparsers.add_parser(
        "cache-stats", help="Show subject cache statistics",
    )
    p_stats.set_defaults(func=_cmd_cache_stats)

    p_invalidate = subparsers.add_parser(
        "cache-invalidate", help="Drop the cached snapshot of a subject",
    )
    p_invalidate.add_argument("identifier", help="Username, @handle or profile URL")
    p_invalidate.set_defaults(func=_cmd_cache_invalidate)

    p_depths = subparsers.add_parser(
        "depths", help="List analysis depths with cost, TTL and duration",
    )
    p_depths.set_defaults(func=_cmd_depths)

    return parser


async def _cmd_cache_stats(args: argparse.Namespace, settings: Settings) -> int:
    """Print statistics for the configured cache backend."""
    from fitscore.cache.cache_factory import create_cache_strategy

    cache = create_cache_strategy(settings)
    stats = await cache.statistics()

    print(f"\nCache statistics ({settings.cache_backend}):")
    print(f"  Entries:      {stats.total}")
    print(f"  Average age:  {_format_duration(stats.avg_age_seconds)}")
    for depth, count in sorted(stats.by_depth.items()):
        print(f"  {depth:<12}  {count}")
    return 0


async def _cmd_cache_invalidate(args: argparse.Namespace, settings: Settings) -> int:
    """Manually invalidate one subject's cache entry."""
    from fitscore.api.models import extract_username
    from fitscore.cache.cache_factory import create_cache_strategy

    username = extract_username(args.identifier)
    if not username:
        logger.error("Cannot extract a username from %r", args.identifier)
        return 1

    cache = create_cache_strategy(settings)
    key = cache.build_key(username)
    await cache.invalidate(key)
    print(f"Invalidated {key}")
    return 0


async def _cmd_depths(args: argparse.Namespace, settings: Settings) -> int:
    """Print the depth table."""
    from fitscore.config.depths import DEPTH_PROFILES, estimated_duration

    ttl_table = settings.cache_ttl_table
    print(f"\n{'depth':<8} {'credits':>7} {'posts':>5} {'cache ttl':>10} {'est. time':>10}")
    for name, profile in DEPTH_PROFILES.items():
        print(
            f"{name:<8} {profile.credit_cost:>7} {profile.posts_limit:>5} "
            f"{_format_duration(ttl_table[name]):>10} "
            f"{estimated_duration(name):>9.0f}s"
        )
    return 0


def _format_duration(seconds: int) -> str:
    """Render seconds as e.g. '6h', '1h 30m', '45s'."""
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    if minutes:
        return f"{minutes}m"
    return f"{secs}s"


def _load_settings(verbose: bool) -> Settings:
    """Load settings and configure logging for CLI usage."""
    from fitscore.config.settings import load_settings
    from fitscore.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format="text",
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    return settings


if __name__ == "__main__":
    sys.exit(main())
