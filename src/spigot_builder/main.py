"""Command line entry point.

Usage::

    spigot-builder [revision] [update]

``revision`` is passed to BuildTools as ``--rev``; ``latest`` (the default)
builds the newest version. ``update`` defaults to true; any other value
keeps the current jar and builds the update in the background instead.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from spigot_builder import __version__
from spigot_builder.config import Settings, get_settings, normalize_revision
from spigot_builder.logging import get_logger, setup_logging
from spigot_builder.orchestrator import Orchestrator


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="spigot-builder",
        description="Keep a Spigot server jar up to date and run the server.",
    )
    parser.add_argument(
        "revision",
        nargs="?",
        default=None,
        help="BuildTools revision to build (default: latest)",
    )
    parser.add_argument(
        "update",
        nargs="?",
        default=None,
        help="'true' to update before starting; anything else updates in the background",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Apply command line overrides on top of the environment settings."""
    settings = base or get_settings()
    overrides: dict[str, object] = {}
    if args.revision is not None:
        overrides["revision"] = normalize_revision(args.revision)
    if args.update is not None:
        overrides["update_enabled"] = args.update.strip().lower() == "true"
    return settings.model_copy(update=overrides) if overrides else settings


async def main(settings: Settings) -> int:
    """Main application entry point."""
    setup_logging(settings)
    log = get_logger("spigot_builder.main")
    log.info(
        "starting_spigot_builder",
        version=__version__,
        revision=settings.revision or "latest",
        update_enabled=settings.update_enabled,
    )
    return await Orchestrator(settings).run()


def run(argv: Sequence[str] | None = None) -> None:
    """Run the application."""
    settings = resolve_settings(parse_args(argv))
    try:
        code = asyncio.run(main(settings))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
