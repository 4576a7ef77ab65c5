#!/usr/bin/env python3
"""CLI entry point for the catalog sync."""

import argparse
import asyncio
import logging
import sqlite3
import sys
from pathlib import Path

from .config import SyncConfig
from .db import RunHistory
from .errors import SyncError
from .models import Key, RunSummary
from .pipeline import SyncPipeline
from .reconcile import DEDUP_CRITERIA

logger = logging.getLogger(__name__)


def print_summary(summary: RunSummary) -> None:
    """Print run summary."""
    print(f"\n{'=' * 60}")
    print("Sync summary")
    print(f"{'=' * 60}")
    print(f"  rows: {summary.rows_total} (skipped {summary.rows_skipped}, duplicates {summary.duplicates_resolved})")
    print(
        f"  hidden: non-amazon {summary.hidden_non_amazon}, inactive {summary.hidden_inactive}, "
        f"removed from active {summary.removed_from_active}"
    )
    print(f"  active: {summary.active_count}  archive: {summary.archive_count}")
    print(
        f"  images: cached {summary.images_cached}, fetched {summary.images_fetched}, "
        f"stale {summary.images_stale}, placeholder {summary.images_placeholder}, "
        f"failed {summary.images_failed}"
    )
    status = "published" if summary.published else "NOT published"
    print(f"  pages: {summary.pages_written} written, {summary.pages_failed} failed ({status})")
    if summary.error:
        print(f"  error: {summary.error}")


def print_history(history: RunHistory, limit: int = 10) -> None:
    runs = history.recent_runs(limit)
    if not runs:
        print("No runs recorded yet.")
        return
    for run in runs:
        counters = run["summary"]
        duration = run["duration_seconds"]
        duration_text = f"{duration:.2f}s" if duration is not None else "-"
        print(
            f"  #{run['id']} {run['started_at']} {run['status']:<9} "
            f"active={counters.get('active_count', '-')} archive={counters.get('archive_count', '-')} "
            f"({duration_text})"
        )
        if run["error_message"]:
            print(f"      {run['error_message']}")


def parse_key(value: str) -> Key:
    """Parse `MARKET:ASIN` (or `MARKET|ASIN`) into a natural key."""
    for sep in (":", "|"):
        market, found, asin = value.partition(sep)
        if found and market.strip() and asin.strip():
            return (market.strip().upper(), asin.strip().upper())
    raise argparse.ArgumentTypeError(f"expected MARKET:ASIN, got {value!r}")


def parse_criteria(value: str) -> tuple[str, ...]:
    criteria = tuple(item.strip() for item in value.split(",") if item.strip())
    unknown = [name for name in criteria if name not in DEDUP_CRITERIA]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown criteria {', '.join(unknown)}; available: {', '.join(DEDUP_CRITERIA)}"
        )
    return criteria


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Rebuild products.json / archive.json from the CSV feed and publish /p preview pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  CSV_URL=https://example.com/export.csv python -m catalog_sync.cli
  python -m catalog_sync.cli --feed-url URL --site-dir ./site
  python -m catalog_sync.cli --skip-pages                # catalog + images only
  python -m catalog_sync.cli --invalidate-image US:B0ABC  # force a fresh image download
  python -m catalog_sync.cli --history                   # show recent runs
        """,
    )
    parser.add_argument("--feed-url", help="CSV feed URL (default: $CSV_URL)")
    parser.add_argument("--site-origin", help="Public site origin (default: $SITE_ORIGIN)")
    parser.add_argument("--site-dir", type=Path, help="Site root holding products.json (default: $SITE_DIR or cwd)")
    parser.add_argument("--out-dir", type=Path, help="Page tree output directory (default: <site-dir>/p)")
    parser.add_argument("--concurrency", type=int, help="Concurrent image downloads (default: 8)")
    parser.add_argument("--dedup", type=parse_criteria, help="Comma-separated dedup criteria, in priority order")
    parser.add_argument("--skip-pages", action="store_true", help="Do not regenerate the page tree")
    parser.add_argument(
        "--invalidate-image",
        type=parse_key,
        action="append",
        default=[],
        metavar="MARKET:ASIN",
        help="Drop a cached image before the run (repeatable)",
    )
    parser.add_argument("--history", action="store_true", help="Show recent runs and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = SyncConfig.from_env(
            feed_url=args.feed_url,
            site_origin=args.site_origin,
            site_dir=args.site_dir,
            out_dir=args.out_dir,
            download_concurrency=args.concurrency,
            dedup_criteria=args.dedup,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        history = RunHistory(config.history_db)
    except (sqlite3.Error, OSError) as e:
        logger.warning(f"Run history unavailable: {e}")
        history = None

    if args.history:
        if history is None:
            print("Error: run history unavailable", file=sys.stderr)
            return 1
        print_history(history)
        return 0

    if not config.feed_url:
        print("Error: feed URL is empty. Set CSV_URL or pass --feed-url.", file=sys.stderr)
        return 2

    print(f"[sync] feed      = {config.feed_url}")
    print(f"[sync] site dir  = {config.site_dir}")
    print(f"[sync] pages dir = {config.out_dir}")

    try:
        pipeline = SyncPipeline(config, history=history)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        summary = asyncio.run(pipeline.run(skip_pages=args.skip_pages, invalidate=args.invalidate_image))
    except SyncError as e:
        logger.error(f"Sync failed: {e}")
        print(f"[fatal] {e}", file=sys.stderr)
        return 1

    print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
