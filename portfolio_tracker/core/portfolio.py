"""Portfolio profit/loss calculations over positions and cached prices."""
from datetime import datetime
from decimal import Decimal
from typing import List, Mapping, Sequence

from portfolio_tracker.core.models import PortfolioItem, PortfolioSnapshot, Position, Summary


HUNDRED = Decimal("100")


def build_item(position: Position, price: Decimal | None) -> PortfolioItem:
    """
    Calculate profit/loss for one position.

    A missing price leaves market value, profit and profit percent as None.
    They are never filled in with 0 or with the cost.
    """
    total_cost = position.cost_price * position.shares

    market_value = price * position.shares if price is not None else None
    profit = market_value - total_cost if market_value is not None else None
    if profit is not None and total_cost > 0:
        profit_percent = profit / total_cost * HUNDRED
    else:
        profit_percent = None

    return PortfolioItem(
        id=position.id,
        code=position.code,
        name=position.name,
        asset_type=position.asset_type,
        cost_price=position.cost_price,
        shares=position.shares,
        current_price=price,
        total_cost=total_cost,
        market_value=market_value,
        profit=profit,
        profit_percent=profit_percent,
    )


def summarize(items: Sequence[PortfolioItem]) -> Summary:
    """
    Portfolio-wide totals.

    Every item counts towards total cost; items without a price add 0 to
    market value and profit.
    """
    total_cost = sum((item.total_cost for item in items), Decimal("0"))
    total_market_value = sum(
        (item.market_value for item in items if item.market_value is not None), Decimal("0")
    )
    total_profit = sum((item.profit for item in items if item.profit is not None), Decimal("0"))

    total_profit_percent = total_profit / total_cost * HUNDRED if total_cost > 0 else Decimal("0")

    return Summary(
        total_cost=total_cost,
        total_market_value=total_market_value,
        total_profit=total_profit,
        total_profit_percent=total_profit_percent,
    )


def compute_snapshot(
    positions: Sequence[Position],
    prices: Mapping[str, Decimal],
    computed_at: datetime | None = None,
) -> PortfolioSnapshot:
    """
    Join positions with cached prices into a portfolio snapshot.

    Pure: no storage or network access. Items keep the order of `positions`.
    """
    items: List[PortfolioItem] = [build_item(p, prices.get(p.code)) for p in positions]

    return PortfolioSnapshot(
        items=items,
        summary=summarize(items),
        has_prices=any(item.current_price is not None for item in items),
        computed_at=computed_at,
    )


def empty_snapshot() -> PortfolioSnapshot:
    """Snapshot served before anything has been computed."""
    return PortfolioSnapshot(items=[], summary=Summary(), has_prices=False, computed_at=None)
