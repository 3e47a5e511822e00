"""
TCGMaster — Admin Set Import Script

Imports one set (and all its cards) from PokemonPriceTracker, or refreshes
the set listing and its import priorities. Safe to re-run.

Usage:
    python scripts/import_set.py --set-id base1 --priority 1000
    python scripts/import_set.py --set-id sv8 --include-ebay
    python scripts/import_set.py --sync-sets
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from redis.asyncio import Redis

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import settings
from src.context import build_context
from src.main import _configure_logging, create_db_engine


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import a card set, or refresh the set listing.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/import_set.py --set-id base1 --priority 1000
  python scripts/import_set.py --set-id sv8 --include-ebay
  python scripts/import_set.py --sync-sets
""",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--set-id",
        type=str,
        help="PokemonPriceTracker set id to import (e.g. base1, sv8).",
    )
    target.add_argument(
        "--sync-sets",
        action="store_true",
        help="Refresh the full set listing and recompute import priorities.",
    )
    parser.add_argument(
        "--priority",
        type=int,
        default=None,
        help="Import priority to store on the set (higher imports first).",
    )
    parser.add_argument(
        "--include-ebay",
        action="store_true",
        help="Also pull graded eBay sales (costs an extra credit per card).",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    _configure_logging(log_level=settings.LOG_LEVEL)

    engine, session_factory = await create_db_engine()
    context = build_context(engine, session_factory, Redis.from_url(settings.REDIS_URL))

    try:
        if args.sync_sets:
            result = await context.sync.sync_sets()
            print(f"Synced {result.synced} sets.")
        else:
            print(f"Importing set {args.set_id} ...")
            result = await context.sync.import_set(
                args.set_id, priority=args.priority, include_ebay=args.include_ebay
            )
            print(f"Imported {result.cards_imported} cards.")
        for error in result.errors:
            print(f"  error: {error}", file=sys.stderr)
        if result.errors:
            sys.exit(1)
    except Exception as e:
        print(f"Import failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await context.aclose()


if __name__ == "__main__":
    asyncio.run(main())
