"""Price refresh pipeline: pick due codes, fetch quotes in parallel, rebuild the snapshot."""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import duckdb

from portfolio_tracker.adapters import funds_eastmoney, stocks_sina
from portfolio_tracker.core.errors import RefreshError
from portfolio_tracker.core.market_hours import (
    MARKET_TZ,
    is_equity_trading_time,
    is_fund_update_time,
    to_market_time,
)
from portfolio_tracker.core.models import AssetType, PortfolioSnapshot, Quote, classify
from portfolio_tracker.core.portfolio import compute_snapshot
from portfolio_tracker.core.positions import PositionStore
from portfolio_tracker.core.price_cache import PriceCache
from portfolio_tracker.core.snapshot import SnapshotCache


logger = logging.getLogger(__name__)

QuoteFetcher = Callable[[str], Optional[Quote]]

DEFAULT_MAX_WORKERS = 8


class TypeFilter(str, Enum):
    ALL = "all"
    EQUITY = "equity"
    FUND = "fund"

    @classmethod
    def parse(cls, value: "TypeFilter | str | None") -> "TypeFilter":
        if isinstance(value, TypeFilter):
            return value
        if not value:
            return cls.ALL
        value = value.strip().lower()
        if value == "stock":
            return cls.EQUITY
        return cls(value)

    def matches(self, asset_type: AssetType) -> bool:
        return self is TypeFilter.ALL or self.value == asset_type.value


class RefreshStatus(str, Enum):
    EMPTY = "empty"              # no positions tracked
    NOTHING_DUE = "nothing_due"  # positions exist but no code is in its window
    COMPLETED = "completed"


@dataclass
class RefreshResult:
    status: RefreshStatus
    updated: int = 0
    failed: int = 0
    codes: List[str] = field(default_factory=list)
    failed_codes: List[str] = field(default_factory=list)
    equity_window_open: bool = False
    fund_window_open: bool = False

    @property
    def message(self) -> str:
        if self.status is RefreshStatus.EMPTY:
            return "No positions to refresh"
        if self.status is RefreshStatus.NOTHING_DUE:
            equity = "open" if self.equity_window_open else "closed"
            fund = "open" if self.fund_window_open else "closed"
            return f"Nothing due (equity window {equity}, fund window {fund})"
        return f"Updated {self.updated} prices, {self.failed} failed"


def _as_price(value) -> Decimal | None:
    """
    Accept finite positive numbers only.

    Providers report 0 before the open and for suspended stocks; that is
    no price, not a price of 0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    return price if price.is_finite() and price > 0 else None


class RefreshService:
    """
    Refreshes cached prices and the portfolio snapshot.

    Overlapping refresh cycles are not serialized: each one writes its own
    prices and snapshot and the last writer wins.
    """

    def __init__(
        self,
        positions: PositionStore,
        prices: PriceCache,
        snapshots: SnapshotCache,
        fetch_equity: QuoteFetcher = stocks_sina.get_quote,
        fetch_fund: QuoteFetcher = funds_eastmoney.get_quote,
        max_workers: int = DEFAULT_MAX_WORKERS,
        tz: ZoneInfo = MARKET_TZ,
    ):
        self.positions = positions
        self.prices = prices
        self.snapshots = snapshots
        self.fetch_equity = fetch_equity
        self.fetch_fund = fetch_fund
        self.max_workers = max_workers
        self.tz = tz

    def select_codes(
        self,
        codes: List[str],
        force: bool = False,
        type_filter: TypeFilter = TypeFilter.ALL,
        now: datetime | None = None,
    ) -> List[str]:
        """Codes that should be fetched live now."""
        local_now = to_market_time(now, self.tz)
        equity_open = is_equity_trading_time(local_now, self.tz)
        fund_open = is_fund_update_time(local_now, self.tz)

        selected = []
        for code in codes:
            asset_type = classify(code)
            if not type_filter.matches(asset_type):
                continue
            if force:
                selected.append(code)
            elif asset_type is AssetType.FUND and fund_open:
                selected.append(code)
            elif asset_type is AssetType.EQUITY and equity_open:
                selected.append(code)
        return selected

    def fetch_quote(self, code: str) -> Quote | None:
        """
        Fetch one quote. Never raises.

        Any provider exception, empty result or unusable price counts as
        "no price this cycle" for the code.
        """
        fetcher = self.fetch_fund if classify(code) is AssetType.FUND else self.fetch_equity
        try:
            quote = fetcher(code)
        except Exception as e:
            logger.warning("Quote fetch failed for %s: %s", code, e)
            return None

        if quote is None:
            logger.warning("No quote returned for %s", code)
            return None

        price = _as_price(quote.price)
        if price is None:
            logger.warning("Unusable price for %s: %r", code, quote.price)
            return None

        return Quote(code=code, price=price, name=quote.name)

    def fetch_quotes(self, codes: List[str]) -> Dict[str, Quote | None]:
        """Fetch every code concurrently and wait for all of them to settle."""
        if not codes:
            return {}

        workers = max(1, min(self.max_workers, len(codes)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quote") as pool:
            futures = {code: pool.submit(self.fetch_quote, code) for code in codes}
            return {code: future.result() for code, future in futures.items()}

    def rebuild_snapshot(self, now: datetime | None = None) -> PortfolioSnapshot:
        """Recompute the portfolio from stored positions and cached prices, and store it."""
        positions = self.positions.list()
        prices = self.prices.get_batch(p.code for p in positions)
        snapshot = compute_snapshot(positions, prices, computed_at=now or datetime.now())
        self.snapshots.save(snapshot)
        return snapshot

    def refresh(
        self,
        force: bool = False,
        type_filter: TypeFilter | str = TypeFilter.ALL,
        now: datetime | None = None,
    ) -> RefreshResult:
        """
        Run one refresh cycle.

        Args:
            force: Fetch every selected code regardless of trading windows
            type_filter: Restrict the cycle to equities or funds
            now: Clock reading, defaults to the current time

        Returns:
            RefreshResult with updated/failed counts

        Raises:
            RefreshError: storage could not be read or written
        """
        type_filter = TypeFilter.parse(type_filter)
        local_now = to_market_time(now, self.tz)
        equity_open = is_equity_trading_time(local_now, self.tz)
        fund_open = is_fund_update_time(local_now, self.tz)

        try:
            tracked = self.positions.list_codes()
        except duckdb.Error as e:
            raise RefreshError(f"Could not load tracked codes: {e}") from e

        if not tracked:
            logger.info("Refresh skipped: no positions")
            return RefreshResult(
                status=RefreshStatus.EMPTY,
                equity_window_open=equity_open,
                fund_window_open=fund_open,
            )

        eligible = self.select_codes(tracked, force=force, type_filter=type_filter, now=local_now)
        if not eligible:
            logger.info(
                "Refresh skipped: nothing due (equity window %s, fund window %s)",
                "open" if equity_open else "closed",
                "open" if fund_open else "closed",
            )
            return RefreshResult(
                status=RefreshStatus.NOTHING_DUE,
                equity_window_open=equity_open,
                fund_window_open=fund_open,
            )

        results = self.fetch_quotes(eligible)
        successes = {code: quote for code, quote in results.items() if quote is not None}
        failed_codes = [code for code, quote in results.items() if quote is None]

        try:
            self.prices.set_batch({code: quote.price for code, quote in successes.items()})
        except duckdb.Error as e:
            raise RefreshError(f"Could not write {len(successes)} prices: {e}") from e

        self._sync_names(successes)

        try:
            self.rebuild_snapshot()
        except duckdb.Error as e:
            raise RefreshError(f"Could not rebuild portfolio snapshot: {e}") from e

        result = RefreshResult(
            status=RefreshStatus.COMPLETED,
            updated=len(successes),
            failed=len(eligible) - len(successes),
            codes=eligible,
            failed_codes=failed_codes,
            equity_window_open=equity_open,
            fund_window_open=fund_open,
        )
        logger.info("Refresh completed: %s", result.message)
        return result

    def refresh_code(self, code: str) -> bool:
        """
        Fetch a single code outside the trading windows and rebuild the snapshot.

        Returns True if a price was stored.
        """
        quote = self.fetch_quote(code)
        if quote is not None:
            self.prices.set(code, quote.price)
            self._sync_names({code: quote})
        self.rebuild_snapshot()
        return quote is not None

    def _sync_names(self, quotes: Dict[str, Quote]) -> None:
        """Adopt provider display names. Best-effort."""
        named = {code: q.name for code, q in quotes.items() if q.name}
        if not named:
            return
        try:
            stored = {p.code: p.name for p in self.positions.list()}
            for code, name in named.items():
                if code in stored and stored[code] != name:
                    self.positions.rename(code, name)
        except duckdb.Error as e:
            logger.warning("Could not update position names: %s", e)
