# main.py
"""CLI entry point for the Slotweave chapter generation pipeline."""

from __future__ import annotations

import argparse
import sys

from config import settings

from orchestration.cli_runner import RunRequest, run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate novel chapters from chapter plans with slot-based synthesis."
    )
    parser.add_argument("--plans", required=True, help="JSON file with chapter plans")
    parser.add_argument("--outline", default=None, help="Story outline text file")
    parser.add_argument("--characters", default=None, help="JSON file with character descriptions")
    parser.add_argument("--start-chapter", type=int, default=1, help="Number of the first plan's chapter")
    parser.add_argument(
        "--no-polish",
        action="store_true",
        help="Skip the light polish phase",
    )
    parser.add_argument(
        "--fallback-retry",
        action="store_true",
        default=settings.ENABLE_FALLBACK_RETRY,
        help="Retry the whole pipeline once when a phase fails",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and start the run."""
    args = build_parser().parse_args(argv)
    if args.start_chapter < 1:
        build_parser().error("--start-chapter must be at least 1")
    request = RunRequest(
        plans_path=args.plans,
        outline_path=args.outline,
        characters_path=args.characters,
        start_chapter=args.start_chapter,
        enable_light_polish=settings.ENABLE_LIGHT_POLISH and not args.no_polish,
        enable_fallback_retry=args.fallback_retry,
    )
    return run(request)


if __name__ == "__main__":
    sys.exit(main())
