"""Portfolio snapshot cache: the precomputed portfolio, one JSON row."""
import json
from datetime import datetime

import duckdb

from portfolio_tracker.core.db import cursor
from portfolio_tracker.core.models import PortfolioSnapshot
from portfolio_tracker.core.portfolio import empty_snapshot


SNAPSHOT_KEY = "main"


class SnapshotCache:
    def __init__(self, conn: duckdb.DuckDBPyConnection, key: str = SNAPSHOT_KEY):
        self.conn = conn
        self.key = key

    def save(self, snapshot: PortfolioSnapshot) -> None:
        """Replace the stored snapshot."""
        data = json.dumps(snapshot.to_dict(), ensure_ascii=False, sort_keys=True)
        with cursor(self.conn) as cur:
            cur.execute("""
                INSERT INTO portfolio_cache (key, data, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, [self.key, data, datetime.now()])

    def load(self) -> PortfolioSnapshot | None:
        with cursor(self.conn) as cur:
            row = cur.execute("SELECT data FROM portfolio_cache WHERE key = ?", [self.key]).fetchone()
        if not row:
            return None
        return PortfolioSnapshot.from_dict(json.loads(row[0]))

    def load_or_empty(self) -> PortfolioSnapshot:
        """Stored snapshot, or an empty one on a cold start."""
        snapshot = self.load()
        return snapshot if snapshot is not None else empty_snapshot()
