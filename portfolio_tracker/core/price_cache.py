"""Price cache: durable per-code prices with an optional in-memory TTL tier."""
import threading
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, Mapping, Tuple

import duckdb

from portfolio_tracker.core.db import cursor
from portfolio_tracker.core.models import CachedPrice


DEFAULT_TTL_SECONDS = 30


class MemoryPriceCache:
    """
    Short-lived in-process price cache.

    Collapses bursts of near-simultaneous reads. Entries expire after
    `ttl_seconds` and are dropped lazily when read. Never the source of
    truth: the durable PriceCache is.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Decimal, float]] = {}
        self._lock = threading.Lock()

    def get(self, code: str) -> Decimal | None:
        with self._lock:
            entry = self._entries.get(code)
            if entry is None:
                return None
            price, captured_at = entry
            if self._clock() - captured_at > self.ttl_seconds:
                del self._entries[code]
                return None
            return price

    def get_batch(self, codes: Iterable[str]) -> Dict[str, Decimal]:
        prices = {}
        for code in codes:
            price = self.get(code)
            if price is not None:
                prices[code] = price
        return prices

    def set(self, code: str, price: Decimal) -> None:
        with self._lock:
            self._entries[code] = (price, self._clock())

    def set_batch(self, prices: Mapping[str, Decimal]) -> None:
        now = self._clock()
        with self._lock:
            for code, price in prices.items():
                self._entries[code] = (price, now)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PriceCache:
    """Latest known price per code, stored in the `price_cache` table."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, memory: MemoryPriceCache | None = None):
        self.conn = conn
        self.memory = memory

    def get(self, code: str) -> Decimal | None:
        if self.memory is not None:
            price = self.memory.get(code)
            if price is not None:
                return price

        entry = self.get_entry(code)
        if entry is None:
            return None
        if self.memory is not None:
            self.memory.set(code, entry.price)
        return entry.price

    def get_entry(self, code: str) -> CachedPrice | None:
        """Durable row for a code, including when it was written."""
        with cursor(self.conn) as cur:
            row = cur.execute(
                "SELECT code, price, updated_at FROM price_cache WHERE code = ?", [code]
            ).fetchone()
        if not row:
            return None
        return CachedPrice(code=row[0], price=Decimal(str(row[1])), updated_at=row[2])

    def get_batch(self, codes: Iterable[str]) -> Dict[str, Decimal]:
        """
        Prices for the given codes.

        Codes without a cached price are left out of the result.
        """
        codes = list(dict.fromkeys(codes))
        if not codes:
            return {}

        prices: Dict[str, Decimal] = {}
        if self.memory is not None:
            prices.update(self.memory.get_batch(codes))

        missing = [code for code in codes if code not in prices]
        if missing:
            placeholders = ",".join("?" for _ in missing)
            with cursor(self.conn) as cur:
                rows = cur.execute(
                    f"SELECT code, price FROM price_cache WHERE code IN ({placeholders})", missing
                ).fetchall()
            durable = {code: Decimal(str(price)) for code, price in rows}
            if self.memory is not None and durable:
                self.memory.set_batch(durable)
            prices.update(durable)

        return prices

    def set(self, code: str, price: Decimal, now: datetime | None = None) -> None:
        self.set_batch({code: price}, now=now)

    def set_batch(self, prices: Mapping[str, Decimal], now: datetime | None = None) -> None:
        """Upsert many prices in one transaction, all stamped with the same write time."""
        if not prices:
            return
        if now is None:
            now = datetime.now()

        rows = [[code, Decimal(str(price)), now] for code, price in prices.items()]
        with cursor(self.conn) as cur:
            cur.begin()
            try:
                cur.executemany("""
                    INSERT INTO price_cache (code, price, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (code) DO UPDATE SET
                        price = EXCLUDED.price,
                        updated_at = EXCLUDED.updated_at
                """, rows)
                cur.commit()
            except duckdb.Error:
                cur.rollback()
                raise

        if self.memory is not None:
            self.memory.set_batch({code: price for code, price, _ in rows})
