"""Main entry point for the portfolio tracker."""
import argparse
import logging
import os
import sys

import duckdb

from portfolio_tracker.core.db import init_db, get_setting
from portfolio_tracker.core.errors import RefreshError
from portfolio_tracker.core.scheduler import DEFAULT_INTERVAL_SECONDS, shutdown_scheduler, start_scheduler
from portfolio_tracker.core.tracker import Tracker


def configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_refresh(tracker: Tracker, force: bool, asset_type: str) -> int:
    """Single refresh cycle, for an external scheduler (cron)."""
    try:
        result = tracker.trigger_refresh(force=force, type_filter=asset_type)
    except RefreshError as e:
        print(f"✗ Refresh failed: {e}", file=sys.stderr)
        return 1

    print(f"✓ {result.message}")
    if result.failed_codes:
        print(f"⚠ No price for: {', '.join(result.failed_codes)}")
    return 0


def run_ui(tracker: Tracker, port: int) -> None:
    from portfolio_tracker.ui import launch

    print(f"✓ Market timezone: {get_setting(tracker.conn, 'market_timezone')}")
    print(f"✓ Tracked positions: {len(tracker.list_positions())}")

    snapshot = tracker.read_snapshot()
    computed = snapshot.computed_at.isoformat() if snapshot.computed_at else "never"
    print(f"✓ Portfolio snapshot computed: {computed}")

    interval = float(get_setting(tracker.conn, "refresh_interval_seconds") or DEFAULT_INTERVAL_SECONDS)
    scheduler = start_scheduler(tracker, interval_seconds=interval)
    print(f"✓ Refreshing due prices every {interval:g}s")

    print("\n🚀 Launching Gradio UI...")
    print(f"Access the tracker at: http://localhost:{port}")
    try:
        launch(tracker, share=False, server_port=port)
    finally:
        shutdown_scheduler(scheduler)


def main(argv=None) -> int:
    """Initialize and run the application."""
    parser = argparse.ArgumentParser(description="Stock and fund portfolio tracker")
    parser.add_argument("--db", help="DuckDB file (default: $PORTFOLIO_DB_PATH or data/portfolio.duckdb)")
    subparsers = parser.add_subparsers(dest="command")

    ui_parser = subparsers.add_parser("ui", help="Launch the web UI (default)")
    ui_parser.add_argument("--port", type=int, default=7860)

    refresh_parser = subparsers.add_parser("refresh", help="Refresh cached prices once")
    refresh_parser.add_argument("--force", action="store_true", help="Ignore trading windows")
    refresh_parser.add_argument("--type", dest="asset_type", default="all",
                                choices=["all", "equity", "stock", "fund"])

    args = parser.parse_args(argv)
    configure_logging()

    try:
        conn = init_db(args.db)
    except duckdb.IOException as e:
        # Another process (usually the running UI) holds the database lock
        print(f"✗ Could not open database: {e}", file=sys.stderr)
        return 1

    tracker = Tracker.from_settings(conn)
    try:
        if args.command == "refresh":
            return run_refresh(tracker, args.force, args.asset_type)

        print("Initializing Portfolio Tracker...")
        run_ui(tracker, getattr(args, "port", 7860))
        return 0
    finally:
        tracker.close()


if __name__ == "__main__":
    sys.exit(main())
