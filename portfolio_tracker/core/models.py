"""Data models for the application."""
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional


FUND_CODE_PATTERN = re.compile(r"^\d{6}$")


class AssetType(str, Enum):
    EQUITY = "equity"
    FUND = "fund"


def classify(code: str) -> AssetType:
    """Six-digit numeric codes are funds, everything else (sh600519, sz000001, ...) is an equity."""
    if FUND_CODE_PATTERN.match(code):
        return AssetType.FUND
    return AssetType.EQUITY


@dataclass
class Position:
    id: str
    code: str
    name: str
    cost_price: Decimal
    shares: Decimal
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def asset_type(self) -> AssetType:
        return classify(self.code)


@dataclass
class CachedPrice:
    code: str
    price: Decimal
    updated_at: datetime | None = None


@dataclass
class Quote:
    """Point-in-time price from a quote provider."""
    code: str
    price: Decimal
    name: str | None = None


def _num(value: Optional[Decimal]) -> float | None:
    return float(value) if value is not None else None


def _dec(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


@dataclass
class PortfolioItem:
    """Computed profit/loss for a single position."""
    id: str
    code: str
    name: str
    asset_type: AssetType
    cost_price: Decimal
    shares: Decimal
    current_price: Decimal | None
    total_cost: Decimal
    market_value: Decimal | None
    profit: Decimal | None
    profit_percent: Decimal | None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "asset_type": self.asset_type.value,
            "cost_price": float(self.cost_price),
            "shares": float(self.shares),
            "current_price": _num(self.current_price),
            "total_cost": float(self.total_cost),
            "market_value": _num(self.market_value),
            "profit": _num(self.profit),
            "profit_percent": _num(self.profit_percent),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PortfolioItem":
        return cls(
            id=data["id"],
            code=data["code"],
            name=data["name"],
            asset_type=AssetType(data["asset_type"]),
            cost_price=_dec(data["cost_price"]),
            shares=_dec(data["shares"]),
            current_price=_dec(data.get("current_price")),
            total_cost=_dec(data["total_cost"]),
            market_value=_dec(data.get("market_value")),
            profit=_dec(data.get("profit")),
            profit_percent=_dec(data.get("profit_percent")),
        )


@dataclass
class Summary:
    total_cost: Decimal = Decimal("0")
    total_market_value: Decimal = Decimal("0")
    total_profit: Decimal = Decimal("0")
    total_profit_percent: Decimal = Decimal("0")

    def to_dict(self) -> Dict:
        return {
            "total_cost": float(self.total_cost),
            "total_market_value": float(self.total_market_value),
            "total_profit": float(self.total_profit),
            "total_profit_percent": float(self.total_profit_percent),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Summary":
        return cls(
            total_cost=_dec(data["total_cost"]),
            total_market_value=_dec(data["total_market_value"]),
            total_profit=_dec(data["total_profit"]),
            total_profit_percent=_dec(data["total_profit_percent"]),
        )


@dataclass
class PortfolioSnapshot:
    """Precomputed aggregate of every position, cached for fast reads."""
    items: List[PortfolioItem] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)
    has_prices: bool = False
    computed_at: datetime | None = None

    def to_dict(self) -> Dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "summary": self.summary.to_dict(),
            "has_prices": self.has_prices,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PortfolioSnapshot":
        computed_at = data.get("computed_at")
        return cls(
            items=[PortfolioItem.from_dict(item) for item in data.get("items", [])],
            summary=Summary.from_dict(data["summary"]),
            has_prices=bool(data.get("has_prices", False)),
            computed_at=datetime.fromisoformat(computed_at) if computed_at else None,
        )
