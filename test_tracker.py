"""Tests for the Tracker facade and its background tasks."""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from portfolio_tracker.adapters import funds_eastmoney, stocks_sina
from portfolio_tracker.core.db import get_setting, set_setting
from portfolio_tracker.core.errors import PositionValidationError
from portfolio_tracker.core.models import Quote
from portfolio_tracker.core.tracker import BackgroundTasks, Tracker, default_chart_range


def equity_quotes(code):
    return Quote(code=code, price=Decimal("1650"), name="贵州茅台")


def no_quotes(code):
    return None


@pytest.fixture
def tracker(conn):
    tracker = Tracker(conn, fetch_equity=equity_quotes, fetch_fund=no_quotes)
    yield tracker
    # the conn fixture closes the connection
    tracker.background.shutdown(wait=True)


def test_cold_start_reads_empty_snapshot(tracker):
    snapshot = tracker.read_snapshot()

    assert snapshot.items == []
    assert snapshot.has_prices is False
    assert snapshot.summary.total_cost == Decimal("0")


def test_save_position_prices_it_in_the_background(tracker):
    position = tracker.save_position("sh600519", "Moutai", 1500, 10)
    assert position.code == "sh600519"

    tracker.background.shutdown(wait=True)

    snapshot = tracker.read_snapshot()
    assert len(snapshot.items) == 1
    item = snapshot.items[0]
    assert item.current_price == Decimal("1650")
    assert item.profit == Decimal("1500")
    assert item.name == "贵州茅台"
    assert tracker.cached_price("sh600519") == Decimal("1650")


def test_save_position_without_price(tracker):
    tracker.save_position("110020", "Fund", "1.2", 1000)
    tracker.background.shutdown(wait=True)

    item = tracker.read_snapshot().items[0]
    assert item.current_price is None
    assert item.market_value is None
    assert tracker.read_snapshot().has_prices is False


def test_save_position_rejects_invalid_input(tracker):
    with pytest.raises(PositionValidationError):
        tracker.save_position("sh600519", "Moutai", -1, 10)

    assert tracker.list_positions() == []


def test_delete_position_rebuilds_snapshot(tracker):
    tracker.save_position("sh600519", "Moutai", 1500, 10)
    tracker.background.shutdown(wait=True)
    tracker.background = BackgroundTasks()

    assert tracker.delete_position("sh600519") is True
    tracker.background.shutdown(wait=True)

    assert tracker.read_snapshot().items == []


def test_deleting_unknown_code_schedules_nothing(tracker):
    submitted = []
    tracker.background.submit = lambda description, fn, *args: submitted.append(description)

    assert tracker.delete_position("sh600519") is False
    assert submitted == []


def test_trigger_refresh(tracker):
    tracker.positions.save("sh600519", "Moutai", 1500, 10)

    result = tracker.trigger_refresh(force=True)

    assert result.updated == 1
    assert tracker.read_snapshot().summary.total_market_value == Decimal("16500")


def test_background_failures_are_logged(caplog):
    background = BackgroundTasks()

    def explode():
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="portfolio_tracker.core.tracker"):
        background.submit("explode", explode)
        background.shutdown(wait=True)

    assert "Background task explode failed: boom" in caplog.text


def test_from_settings(conn):
    set_setting(conn, "refresh_workers", "3")
    set_setting(conn, "price_ttl_seconds", "5")

    tracker = Tracker.from_settings(conn)
    try:
        assert tracker.refresher.max_workers == 3
        assert tracker.memory.ttl_seconds == 5.0
        assert str(tracker.refresher.tz) == "Asia/Shanghai"
    finally:
        tracker.background.shutdown(wait=True)


@pytest.mark.parametrize("code, expected", [
    ("110020", "1W"),
    ("sh600519", "1D"),
])
def test_default_chart_range(code, expected):
    assert default_chart_range(code) == expected


def test_search_merges_and_tags_results(tracker, monkeypatch):
    monkeypatch.setattr(stocks_sina, "search_stock", lambda keyword: [
        {"code": "sh600519", "name": "贵州茅台", "type": "11"},
    ])
    monkeypatch.setattr(funds_eastmoney, "search_fund", lambda keyword: [
        {"code": "161725", "name": "招商中证白酒指数", "type": "指数型"},
        {"code": "sh600519", "name": "duplicate", "type": "x"},
    ])

    results = tracker.search(" 白酒 ")

    assert [r["code"] for r in results] == ["sh600519", "161725"]
    assert [r["asset_type"] for r in results] == ["equity", "fund"]


def test_search_blank_keyword(tracker):
    assert tracker.search("   ") == []


def test_fund_chart_never_uses_intraday(tracker, monkeypatch):
    trend = [
        {"day": date.today(), "net_worth": Decimal("1.5"), "total_worth": Decimal("1.5"), "day_growth": Decimal("0")},
    ]
    monkeypatch.setattr(funds_eastmoney, "fetch_fund_data", lambda code: {"quote": None, "net_worth_trend": trend})

    rows = tracker.chart("110020", "1D")

    assert rows == [{"time": date.today().isoformat(), "price": 1.5}]


def test_equity_chart_uses_kline_closes(tracker, monkeypatch):
    calls = []

    def fake_kline(code, scale, datalen):
        calls.append((code, scale, datalen))
        return [{"day": "2024-01-16", "open": Decimal("1"), "high": Decimal("2"),
                 "low": Decimal("1"), "close": Decimal("1.75"), "volume": 10}]

    monkeypatch.setattr(stocks_sina, "fetch_kline", fake_kline)

    rows = tracker.chart("sh600519", "1M")

    assert rows == [{"time": "2024-01-16", "price": 1.75}]
    assert calls == [("sh600519", 240, 22)]


def test_get_quote_updates_price_cache(tracker, monkeypatch):
    monkeypatch.setattr(stocks_sina, "fetch_stock_quote", lambda code: {
        "code": code, "name": "贵州茅台", "current_price": Decimal("1700"),
    })

    quote = tracker.get_quote("sh600519")

    assert quote["current_price"] == Decimal("1700")
    assert tracker.cached_price("sh600519") == Decimal("1700")


def test_get_quote_zero_price_leaves_cache(tracker, monkeypatch):
    tracker.prices.set("sh600519", Decimal("1650"))
    monkeypatch.setattr(stocks_sina, "fetch_stock_quote", lambda code: {
        "code": code, "name": "贵州茅台", "current_price": Decimal("0.000"),
    })

    tracker.get_quote("sh600519")

    assert tracker.cached_price("sh600519") == Decimal("1650")


def test_get_quote_failure_leaves_cache(tracker, monkeypatch):
    tracker.prices.set("110020", Decimal("1.5"))
    monkeypatch.setattr(funds_eastmoney, "fetch_fund_data", lambda code: {"quote": None, "net_worth_trend": []})

    assert tracker.get_quote("110020") is None
    assert tracker.cached_price("110020") == Decimal("1.5")


def test_settings_from_worker_threads(conn):
    def read_and_write(i):
        set_setting(conn, f"extra_{i}", str(i))
        return get_setting(conn, "market_timezone")

    with ThreadPoolExecutor(max_workers=8) as pool:
        values = list(pool.map(read_and_write, range(64)))

    assert values == ["Asia/Shanghai"] * 64
    assert get_setting(conn, "extra_63") == "63"
