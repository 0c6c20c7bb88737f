"""Command-line interface for listing-sync."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from listing_sync.config import Settings
from listing_sync.engine import SyncEngine
from listing_sync.models import ReconcilePolicy
from listing_sync.session_store import get_session_store
from listing_sync.sources import HttpSourceGateway, SourceGateway, StaticSourceGateway
from listing_sync.storage import get_storage, list_storage_backends


def _out(msg: str = "") -> None:
    """Print a status message to stderr so it doesn't mix with JSON output."""
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="listing-sync",
        description="Incremental listing crawler with differential price sync.",
    )
    parser.add_argument(
        "--storage",
        choices=list_storage_backends(),
        default=None,
        help="Storage backend (default: from .env STORAGE_BACKEND)",
    )
    parser.add_argument(
        "--pages-dir",
        type=Path,
        default=None,
        help="Crawl saved pages from this directory instead of SOURCE_URL",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Write JSON output to a file instead of stdout",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start a new crawl session")
    run.add_argument("--batch-size", type=int, default=None, help="Records per batch pause")
    run.add_argument("--page-size", type=int, default=None, help="Offset step per page")
    run.add_argument("--max-iterations", type=int, default=None, help="Hard cap on fetches")
    run.add_argument("--min-price", type=int, default=None)
    run.add_argument("--max-price", type=int, default=None)
    run.add_argument("--region", default=None, help="Only keep listings from this region code")
    run.add_argument(
        "--delay",
        dest="request_delay",
        type=float,
        default=None,
        help="Seconds between page requests",
    )
    run.add_argument(
        "--full-replace",
        action="store_true",
        help="Upsert every record instead of only new and changed ones",
    )
    run.add_argument(
        "--single-batch",
        action="store_true",
        help="Stop at the first batch pause and print the session id for `resume`",
    )

    resume = sub.add_parser("resume", help="Continue a paused or failed session")
    resume.add_argument("session_id")
    resume.add_argument("--single-batch", action="store_true")
    resume.add_argument("--full-replace", action="store_true")

    report = sub.add_parser("report", help="Print the diff report of a session")
    report.add_argument("session_id")

    stats = sub.add_parser("stats", help="Print price and region statistics of a session")
    stats.add_argument("session_id")

    sub.add_parser("sessions", help="List stored session ids")
    return parser


def _build_source(settings: Settings, pages_dir: Path | None) -> SourceGateway:
    if pages_dir is not None:
        return StaticSourceGateway.from_directory(pages_dir, page_size=settings.page_size)
    return HttpSourceGateway(settings)


def _load_settings(args: argparse.Namespace) -> Settings:
    if args.pages_dir is not None:
        # Offline runs do not need SOURCE_URL.
        settings = Settings()
    else:
        settings = Settings.from_env()

    overrides = {}
    if args.storage:
        overrides["storage_backend"] = args.storage
    for flag in (
        "batch_size", "page_size", "max_iterations",
        "min_price", "max_price", "region", "request_delay",
    ):
        value = getattr(args, flag, None)
        if value is not None:
            overrides[flag] = value
    if overrides:
        settings = replace(settings, **overrides)
    return settings


def _drive(engine: SyncEngine, session_id: str, args: argparse.Namespace) -> dict:
    result = engine.resume_run(session_id)
    while result.paused and not args.single_batch:
        _out(f"  Batch {result.batch_ordinal}: {result.count} records, continuing...")
        result = engine.resume_run(session_id)

    payload: dict = {"run": result.model_dump(mode="json")}
    if result.completed:
        policy = ReconcilePolicy.FULL_REPLACE if args.full_replace else None
        report = engine.reconcile(session_id, policy)
        _out(
            f"  Reconciled: {len(report.new)} new, {len(report.change_price)} price changes, "
            f"{report.unchanged_count} unchanged"
        )
        payload["report"] = report.model_dump(mode="json")
    elif result.paused:
        _out(f"  Paused. Continue with: listing-sync resume {session_id}")
    return payload


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = _load_settings(args)
    store = get_session_store(settings)

    if args.command == "sessions":
        print(json.dumps(store.list_sessions(), indent=2))
        return 0

    storage = get_storage(settings)
    source = _build_source(settings, args.pages_dir)
    engine = SyncEngine(source=source, storage=storage, session_store=store, settings=settings)

    try:
        if args.command == "run":
            session_id = engine.start_run()
            _out(f"Session {session_id}")
            payload = _drive(engine, session_id, args)
        elif args.command == "resume":
            payload = _drive(engine, args.session_id, args)
        elif args.command == "stats":
            payload = {"stats": engine.get_stats(args.session_id).model_dump(mode="json")}
        else:
            report = engine.get_diff_report(args.session_id)
            payload = {"report": report.model_dump(mode="json") if report else None}
    finally:
        source.close()
        storage.close()

    output = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        _out(f"Output written to {args.output}")
    else:
        print(output)

    run = payload.get("run")
    return 1 if run is not None and not run["success"] else 0


if __name__ == "__main__":
    sys.exit(main())
