#!/usr/bin/env python3
"""Prepare reference images from the command line.

Usage:
    python run_sanitizer.py sanitize /uploads/scene.jpg [/uploads/other.png ...]
    python run_sanitizer.py warm /uploads/scene.jpg
    python run_sanitizer.py collage 1:identity:/uploads/a.jpg 2:scene:/uploads/b.jpg

Collage items are ``INDEX:ROLE:PATH`` or ``INDEX:PATH``. Results are printed
one per line; paths that could not be processed are printed unchanged.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from models.references import ReferenceItem
from pipeline.identity_collage import IdentityCollageBuilder
from pipeline.scene_sanitizer import SceneFaceSanitizer
from settings import Settings

logger = logging.getLogger("run_sanitizer")


def parse_item(value: str) -> ReferenceItem:
    """``1:identity:/uploads/a.jpg`` or ``1:/uploads/a.jpg`` → ReferenceItem."""
    index, sep, rest = value.partition(":")
    if not sep or not index.strip().isdigit():
        raise argparse.ArgumentTypeError(f"expected INDEX:ROLE:PATH or INDEX:PATH, got {value!r}")
    role, sep, image = rest.partition(":")
    if not sep:
        role, image = "", rest
    if not image:
        raise argparse.ArgumentTypeError(f"missing image path in {value!r}")
    return ReferenceItem(index=int(index), role=role or None, image=image)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    sanitize = sub.add_parser("sanitize", help="blur faces in scene reference images")
    sanitize.add_argument("paths", nargs="+")

    warm = sub.add_parser("warm", help="pre-populate the sanitized cache; never fails")
    warm.add_argument("path")

    collage = sub.add_parser("collage", help="build a labeled identity reference collage")
    collage.add_argument("items", nargs="+", type=parse_item)
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "sanitize":
        sanitizer = SceneFaceSanitizer(settings)
        for path in await sanitizer.sanitize_many(args.paths):
            print(path)
        return 0

    if args.command == "warm":
        await SceneFaceSanitizer(settings).warm(args.path)
        return 0

    result = await IdentityCollageBuilder(settings).get_or_create(args.items)
    if result is None:
        logger.error("No collage built: need at least two existing /uploads/ images")
        return 1
    print(result)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Data directory: %s", settings.data_dir.resolve())
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
