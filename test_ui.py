"""Tests for the UI formatting helpers and the command line entry point."""
import os
import subprocess
import sys
from decimal import Decimal
from pathlib import Path

import duckdb

from portfolio_tracker import main as main_module
from portfolio_tracker import ui
from portfolio_tracker.core.db import set_setting
from portfolio_tracker.core.errors import RefreshError
from portfolio_tracker.core.portfolio import compute_snapshot, empty_snapshot
from portfolio_tracker.core.tracker import Tracker
from portfolio_tracker.main import main


def test_fmt_renders_unknown_as_placeholder():
    assert ui.fmt(None) == "--"
    assert ui.fmt(Decimal("1234.5")) == "1,234.50"
    assert ui.fmt_signed(None, "%") == "--"
    assert ui.fmt_signed(Decimal("-3.456"), "%") == "-3.46%"


def test_snapshot_dataframe(make_position):
    snapshot = compute_snapshot(
        [make_position("sh600519", 1500, 10, name="贵州茅台"), make_position("110020", "1.2", 1000)],
        {"sh600519": Decimal("1650")},
    )

    df = ui.snapshot_dataframe(snapshot)

    assert list(df.columns) == ui.PORTFOLIO_COLUMNS
    assert df.iloc[0]["Current Price"] == "1,650.0000"
    assert df.iloc[0]["Profit %"] == "+10.00%"
    assert df.iloc[1]["Current Price"] == "--"
    assert df.iloc[1]["Market Value"] == "--"
    assert df.iloc[1]["Type"] == "fund"


def test_empty_snapshot_views():
    df = ui.snapshot_dataframe(empty_snapshot())
    markdown = ui.snapshot_markdown(empty_snapshot())

    assert df.empty
    assert "**Positions:** 0" in markdown
    assert "never" in markdown


def test_refresh_prices_reports_errors(conn):
    class BrokenTracker(Tracker):
        def trigger_refresh(self, force=False, type_filter="all"):
            raise RefreshError("disk full")

    tracker = BrokenTracker(conn)
    try:
        assert ui.refresh_prices(tracker, False, "all") == "✗ Error: disk full"
        assert ui.refresh_prices(tracker, False, "bonds").startswith("✗ Error:")
    finally:
        tracker.background.shutdown(wait=True)


def test_refresh_command_without_positions(tmp_path, capsys):
    exit_code = main(["--db", str(tmp_path / "cli.duckdb"), "refresh"])

    assert exit_code == 0
    assert "No positions to refresh" in capsys.readouterr().out


def test_command_reports_locked_database(monkeypatch, tmp_path, capsys):
    def locked(db_path):
        raise duckdb.IOException('IO Error: Could not set lock on file "portfolio.duckdb"')

    monkeypatch.setattr(main_module, "init_db", locked)

    assert main(["--db", str(tmp_path / "cli.duckdb"), "refresh", "--force"]) == 1
    assert "✗ Could not open database" in capsys.readouterr().err


def test_refresh_command_while_another_process_holds_the_database(conn, tmp_path):
    # The conn fixture keeps tmp_path / "test_portfolio.duckdb" open
    completed = subprocess.run(
        [sys.executable, "-m", "portfolio_tracker.main",
         "--db", str(tmp_path / "test_portfolio.duckdb"), "refresh", "--force"],
        cwd=Path(__file__).parent,
        capture_output=True,
        encoding="utf-8",
        env={**os.environ, "PYTHONIOENCODING": "utf-8"},
        timeout=120,
    )

    assert completed.returncode == 1
    assert "✗ Could not open database" in completed.stderr
    assert "Traceback" not in completed.stderr


def test_ui_process_runs_the_periodic_refresh(conn, monkeypatch):
    set_setting(conn, "refresh_interval_seconds", "120")
    started, stopped = [], []

    monkeypatch.setattr(main_module, "start_scheduler",
                        lambda tracker, interval_seconds: started.append(interval_seconds) or "scheduler")
    monkeypatch.setattr(main_module, "shutdown_scheduler", stopped.append)
    monkeypatch.setattr(ui, "launch", lambda tracker, share, server_port: None)

    tracker = Tracker(conn)
    try:
        main_module.run_ui(tracker, 7860)
    finally:
        tracker.background.shutdown(wait=True)

    assert started == [120.0]
    assert stopped == ["scheduler"]
