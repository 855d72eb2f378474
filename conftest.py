from decimal import Decimal

import pytest

from portfolio_tracker.core.db import init_db
from portfolio_tracker.core.models import Position


@pytest.fixture()
def conn(tmp_path):
    conn = init_db(str(tmp_path / "test_portfolio.duckdb"))
    yield conn
    conn.close()


@pytest.fixture()
def make_position():
    def _make(code, cost_price, shares, name=None, pid=None):
        return Position(
            id=pid or f"id-{code}",
            code=code,
            name=name or f"Asset {code}",
            cost_price=Decimal(str(cost_price)),
            shares=Decimal(str(shares)),
        )
    return _make
