#!/usr/bin/env python3
"""
Command-line maintenance for the knowledge store: stale eviction,
statistics and vector index rebuilds against the configured database.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from campus_rag.core.config import load_settings
from campus_rag.core.context import build_context
from campus_rag.core.errors import RAGError
from campus_rag.core.lifecycle import DAY_MS, EvictionReport


def format_report(report: EvictionReport) -> str:
    """Format an eviction report for display."""
    lines = [f"Operation: evict_stale (older than {report.max_age_ms // DAY_MS} days)"]
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    else:
        lines.append("Status: SUCCESS")

    lines.append(f"Scanned: {report.scanned}")
    lines.append(f"Deleted: {len(report.deleted)}")
    lines.append(f"Retained (verified accurate): {len(report.retained)}")

    if report.deleted and len(report.deleted) <= 10:  # Don't flood output
        lines.append("Deleted records:")
        for record_id in report.deleted:
            lines.append(f"  - {record_id}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    return "\n".join(lines)


def format_stats(stats: dict) -> str:
    lines = [
        f"Total records: {stats['total']}",
        f"Verified: {stats['verified_count']}",
        f"Outdated (>30 days): {stats['outdated_count']}",
        f"Average usage: {stats['average_usage_count']:.2f}",
        "By category:"
    ]
    lines.extend(f"  {name}: {count}" for name, count in sorted(stats["by_category"].items()))
    lines.append("By source:")
    lines.extend(f"  {name}: {count}" for name, count in sorted(stats["by_source"].items()))
    return "\n".join(lines)


async def run_evict(max_age_days: Optional[int], as_json: bool) -> int:
    rag = build_context(load_settings())
    max_age_ms = max_age_days * DAY_MS if max_age_days else None
    report = await rag.lifecycle.evict_stale(max_age_ms)
    print(json.dumps(report.to_dict(), indent=2) if as_json else format_report(report))
    return 1 if report.errors else 0


async def run_stats(as_json: bool) -> int:
    rag = build_context(load_settings())
    stats = rag.lifecycle.get_stats()
    print(json.dumps(stats, indent=2) if as_json else format_stats(stats))
    return 0


async def run_reindex(as_json: bool) -> int:
    rag = build_context(load_settings())
    if rag.index is None:
        print("No vector index configured (VECTOR_INDEX=none); nothing to rebuild.")
        return 0
    pushed = await rag.store.rebuild_index()
    result = {"vectors": pushed, "records": rag.store.count(), "index": rag.settings.vector_index}
    print(json.dumps(result, indent=2) if as_json else f"Rebuilt {result['index']} index with {pushed} vectors")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Knowledge store maintenance utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s evict                 # Evict stale unverified records (STALE_AFTER_DAYS)
  %(prog)s evict --days 120      # Use a custom age threshold
  %(prog)s stats --json          # Knowledge statistics as JSON
  %(prog)s reindex               # Rebuild the vector index from SQLite

Environment variables:
- DB_PATH=./data/campus_rag.db (database location)
- VECTOR_INDEX=none|memory|faiss
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    evict = subparsers.add_parser("evict", help="Delete stale records that are not verified accurate")
    evict.add_argument("--days", type=int, default=None, help="Age threshold in days")

    subparsers.add_parser("stats", help="Show knowledge statistics")
    subparsers.add_parser("reindex", help="Rebuild the vector index from canonical records")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "evict" and args.days is not None and args.days < 1:
        parser.error("--days must be >= 1")

    try:
        if args.command == "evict":
            return asyncio.run(run_evict(args.days, args.json))
        if args.command == "stats":
            return asyncio.run(run_stats(args.json))
        return asyncio.run(run_reindex(args.json))
    except RAGError as e:
        print(f"Maintenance failed: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
