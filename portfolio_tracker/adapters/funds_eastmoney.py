"""EastMoney mutual fund net-worth adapter."""
import calendar
import json
import logging
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import requests

from portfolio_tracker.core.market_hours import MARKET_TZ
from portfolio_tracker.core.models import Quote


logger = logging.getLogger(__name__)

FUND_DATA_URL = "https://fund.eastmoney.com/pingzhongdata/"
FUND_SEARCH_URL = "https://fundsuggest.eastmoney.com/FundSearch/api/FundSearchAPI.ashx"
EASTMONEY_HEADERS = {"Referer": "https://fund.eastmoney.com"}
REQUEST_TIMEOUT = 10


def _epoch_ms_to_date(timestamp_ms: int) -> date:
    # Trend points are stamped at midnight market time
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=MARKET_TZ).date()


def parse_fund_data(text: str) -> Dict:
    """
    Parse a pingzhongdata script.

    Returns:
        {"quote": dict or None, "net_worth_trend": [points, oldest first]}
    """
    name_match = re.search(r'var fS_name = "(.+?)"', text)
    code_match = re.search(r'var fS_code = "(.+?)"', text)
    if not name_match or not code_match:
        return {"quote": None, "net_worth_trend": []}

    trend: List[Dict] = []
    trend_match = re.search(r"var Data_netWorthTrend = (\[[\s\S]*?\]);", text)
    if trend_match:
        try:
            for item in json.loads(trend_match.group(1)):
                net_worth = Decimal(str(item["y"]))
                trend.append({
                    "day": _epoch_ms_to_date(item["x"]),
                    "net_worth": net_worth,
                    "total_worth": net_worth,
                    "day_growth": Decimal(str(item.get("equityReturn") or 0)),
                })
        except (ValueError, KeyError, TypeError, InvalidOperation) as e:
            logger.warning("Malformed net worth trend for %s: %s", code_match.group(1), e)
            trend = []

    # Accumulated net worth is optional, fall back to unit net worth
    total_match = re.search(r"var Data_ACWorthTrend = (\[[\s\S]*?\]);", text)
    if total_match and trend:
        try:
            totals = {
                _epoch_ms_to_date(ts): Decimal(str(value))
                for ts, value in json.loads(total_match.group(1))
                if value is not None
            }
            for point in trend:
                point["total_worth"] = totals.get(point["day"], point["net_worth"])
        except (ValueError, TypeError, InvalidOperation) as e:
            logger.debug("Ignoring malformed accumulated trend: %s", e)

    latest = trend[-1] if trend else None
    quote = {
        "code": code_match.group(1),
        "name": name_match.group(1),
        "net_worth": latest["net_worth"] if latest else None,
        "total_worth": latest["total_worth"] if latest else None,
        "day_growth": latest["day_growth"] if latest else Decimal("0"),
        "last_update": latest["day"].isoformat() if latest else "",
    }
    return {"quote": quote, "net_worth_trend": trend}


def fetch_fund_data(code: str) -> Dict:
    """
    Fetch quote and net worth history for a fund.

    Args:
        code: Six-digit fund code (e.g., "110020")

    Returns:
        {"quote": dict or None, "net_worth_trend": list}. quote is None if the
        fund could not be fetched.
    """
    try:
        resp = requests.get(f"{FUND_DATA_URL}{code}.js", headers=EASTMONEY_HEADERS, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        return parse_fund_data(resp.text)
    except Exception as e:
        logger.warning("Error fetching EastMoney fund data for %s: %s", code, e)
        return {"quote": None, "net_worth_trend": []}


def get_quote(code: str) -> Optional[Quote]:
    """Latest net worth and fund name for the refresh pipeline."""
    quote = fetch_fund_data(code)["quote"]
    if quote is None or quote["net_worth"] is None:
        return None
    return Quote(code=code, price=quote["net_worth"], name=quote["name"])


def search_fund(keyword: str) -> List[Dict]:
    """
    Search funds by name or code.

    Returns:
        Up to 10 {code, name, type} dicts
    """
    try:
        params = {"callback": "jQuery", "m": 1, "key": keyword}
        resp = requests.get(FUND_SEARCH_URL, params=params, headers=EASTMONEY_HEADERS, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()

        match = re.search(r"jQuery\((.+)\)", resp.text, re.DOTALL)
        if not match:
            return []

        data = json.loads(match.group(1))
        datas = data.get("Datas")
        if not isinstance(datas, list):
            return []

        results = []
        for item in datas[:10]:
            base_info = item.get("FundBaseInfo") or {}
            results.append({
                "code": item.get("CODE"),
                "name": item.get("NAME"),
                "type": base_info.get("FTYPE") or "基金",
            })
        return results

    except Exception as e:
        logger.warning("Error searching EastMoney for %r: %s", keyword, e)
        return []


def _months_ago(day: date, months: int) -> date:
    month_index = day.year * 12 + day.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def filter_net_worth_by_range(points: List[Dict], range_key: str, today: date | None = None) -> List[Dict]:
    """
    Restrict a net worth trend to a chart range.

    Funds have no intraday data, so 1D is just the latest point. Unknown
    ranges fall back to the last 30 points.
    """
    if not points:
        return []
    if today is None:
        today = datetime.now(MARKET_TZ).date()

    if range_key == "1D":
        return points[-1:]
    elif range_key == "1W":
        start = today - timedelta(days=7)
    elif range_key == "1M":
        start = _months_ago(today, 1)
    elif range_key == "3M":
        start = _months_ago(today, 3)
    elif range_key == "1Y":
        start = _months_ago(today, 12)
    elif range_key == "ALL":
        start = _months_ago(today, 48)
    else:
        return points[-30:]

    return [point for point in points if point["day"] >= start]


def to_chart_data(points: List[Dict]) -> List[Dict]:
    """Convert trend points to {time, price} chart rows."""
    return [{"time": point["day"].isoformat(), "price": float(point["net_worth"])} for point in points]
