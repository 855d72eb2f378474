"""Process-wide tracker: wires storage, caches and the refresh pipeline together."""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal
from functools import partial
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import duckdb

from portfolio_tracker.adapters import funds_eastmoney, stocks_sina
from portfolio_tracker.core.db import get_setting
from portfolio_tracker.core.market_hours import MARKET_TZ
from portfolio_tracker.core.models import AssetType, PortfolioSnapshot, Position, classify
from portfolio_tracker.core.positions import PositionStore
from portfolio_tracker.core.price_cache import DEFAULT_TTL_SECONDS, MemoryPriceCache, PriceCache
from portfolio_tracker.core.refresh import (
    DEFAULT_MAX_WORKERS,
    QuoteFetcher,
    RefreshResult,
    RefreshService,
    TypeFilter,
)
from portfolio_tracker.core.snapshot import SnapshotCache


logger = logging.getLogger(__name__)


def _log_failure(description: str, future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background task %s failed: %s", description, exc, exc_info=exc)


class BackgroundTasks:
    """
    Fire-and-forget executor.

    Submitters get no result back; failures are logged and never reach the
    request that scheduled the task.
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="background")

    def submit(self, description: str, fn, *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(partial(_log_failure, description))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def default_chart_range(code: str) -> str:
    """Funds have no intraday data, so they open on the weekly chart."""
    return "1W" if classify(code) is AssetType.FUND else "1D"


class Tracker:
    """Created once at startup and shared by the UI and the CLI."""

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        memory: MemoryPriceCache | None = None,
        fetch_equity: QuoteFetcher = stocks_sina.get_quote,
        fetch_fund: QuoteFetcher = funds_eastmoney.get_quote,
        max_workers: int = DEFAULT_MAX_WORKERS,
        tz: ZoneInfo = MARKET_TZ,
        background: BackgroundTasks | None = None,
    ):
        self.conn = conn
        self.memory = memory if memory is not None else MemoryPriceCache()
        self.positions = PositionStore(conn)
        self.prices = PriceCache(conn, memory=self.memory)
        self.snapshots = SnapshotCache(conn)
        self.refresher = RefreshService(
            self.positions,
            self.prices,
            self.snapshots,
            fetch_equity=fetch_equity,
            fetch_fund=fetch_fund,
            max_workers=max_workers,
            tz=tz,
        )
        self.background = background if background is not None else BackgroundTasks()

    @classmethod
    def from_settings(cls, conn: duckdb.DuckDBPyConnection, **kwargs) -> "Tracker":
        """Build a tracker configured from the settings table."""
        tz_name = get_setting(conn, "market_timezone") or "Asia/Shanghai"
        ttl = float(get_setting(conn, "price_ttl_seconds") or DEFAULT_TTL_SECONDS)
        workers = int(get_setting(conn, "refresh_workers") or DEFAULT_MAX_WORKERS)
        kwargs.setdefault("memory", MemoryPriceCache(ttl_seconds=ttl))
        kwargs.setdefault("max_workers", workers)
        kwargs.setdefault("tz", ZoneInfo(tz_name))
        return cls(conn, **kwargs)

    # Portfolio

    def trigger_refresh(self, force: bool = False, type_filter: TypeFilter | str = TypeFilter.ALL) -> RefreshResult:
        return self.refresher.refresh(force=force, type_filter=type_filter)

    def read_snapshot(self) -> PortfolioSnapshot:
        return self.snapshots.load_or_empty()

    # Positions

    def list_positions(self) -> List[Position]:
        return self.positions.list()

    def save_position(self, code: str, name: str, cost_price, shares) -> Position:
        """
        Validate and store a position, then fetch its price in the background.

        Returns as soon as the position is written.
        """
        position = self.positions.save(code, name, cost_price, shares)
        self.background.submit(f"refresh {position.code}", self.refresher.refresh_code, position.code)
        return position

    def delete_position(self, code: str) -> bool:
        """Delete a position and rebuild the snapshot in the background if one was removed."""
        deleted = self.positions.delete(code)
        if deleted:
            self.background.submit("rebuild snapshot", self.refresher.rebuild_snapshot)
        return deleted

    def touch_position(self, code: str) -> None:
        self.positions.touch(code)

    # Market data

    def get_quote(self, code: str) -> Optional[Dict]:
        """
        Live quote for the detail view.

        A successful fetch with a positive price also updates the price cache.
        """
        if classify(code) is AssetType.FUND:
            quote = funds_eastmoney.fetch_fund_data(code)["quote"]
            price = quote["net_worth"] if quote else None
        else:
            quote = stocks_sina.fetch_stock_quote(code)
            price = quote["current_price"] if quote else None

        if price is not None and price > 0:
            self.prices.set(code, price)
        return quote

    def cached_price(self, code: str) -> Decimal | None:
        return self.prices.get(code)

    def search(self, keyword: str) -> List[Dict]:
        """Stocks and funds matching a keyword, tagged with their asset type."""
        keyword = (keyword or "").strip()
        if not keyword:
            return []

        results = []
        seen = set()
        for item in stocks_sina.search_stock(keyword) + funds_eastmoney.search_fund(keyword):
            code = item.get("code")
            if not code or code in seen:
                continue
            seen.add(code)
            results.append({**item, "asset_type": classify(code).value})
        return results

    def chart(self, code: str, range_key: str | None = None) -> List[Dict]:
        """Price series as {time, price} rows for the given range."""
        range_key = range_key or default_chart_range(code)
        if classify(code) is AssetType.FUND:
            if range_key == "1D":
                range_key = "1W"
            trend = funds_eastmoney.fetch_fund_data(code)["net_worth_trend"]
            return funds_eastmoney.to_chart_data(funds_eastmoney.filter_net_worth_by_range(trend, range_key))

        scale, datalen = stocks_sina.get_kline_params(range_key)
        bars = stocks_sina.fetch_kline(code, scale=scale, datalen=datalen)
        return [{"time": bar["day"], "price": float(bar["close"])} for bar in bars]

    def close(self) -> None:
        self.background.shutdown(wait=True)
        self.conn.close()
