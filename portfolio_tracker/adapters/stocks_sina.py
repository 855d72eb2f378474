"""Sina Finance A-share quotes adapter."""
import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from portfolio_tracker.core.models import Quote


logger = logging.getLogger(__name__)

SINA_QUOTE_URL = "https://hq.sinajs.cn/list="
SINA_KLINE_URL = (
    "https://quotes.sina.cn/cn/api/jsonp_v2.php/var%20_data=/CN_MarketDataService.getKLineData"
)
SINA_SEARCH_URL = "https://suggest3.sinajs.cn/suggest/type=11,12,13,14,15&name=suggestdata&key="
SINA_HEADERS = {"Referer": "https://finance.sina.com.cn"}
REQUEST_TIMEOUT = 10

# Minimum number of comma separated fields in a valid hq_str payload
QUOTE_FIELD_COUNT = 32

KLINE_PARAMS = {
    "1D": (5, 48),      # 5-minute bars, one session
    "1W": (30, 56),     # 30-minute bars, seven sessions
    "1M": (240, 22),    # daily bars
    "3M": (240, 66),
    "1Y": (240, 250),
    "ALL": (240, 1000),
}


def _get_text(url: str, params: Dict | None = None, encoding: str = "gbk") -> str:
    resp = requests.get(url, params=params, headers=SINA_HEADERS, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp.content.decode(encoding, errors="replace")


def _decimal(value: str) -> Decimal:
    return Decimal(value.strip())


def parse_quote(code: str, text: str) -> Optional[Dict]:
    """
    Parse a hq_str payload.

    Format: var hq_str_sh600519="贵州茅台,open,prev_close,price,high,low,...,date,time,...";
    """
    match = re.search(r'="(.*)"', text)
    if not match or not match.group(1):
        return None

    parts = match.group(1).split(",")
    if len(parts) < QUOTE_FIELD_COUNT:
        return None

    try:
        current_price = _decimal(parts[3])
        prev_close = _decimal(parts[2])
        change = current_price - prev_close
        change_percent = change / prev_close * 100 if prev_close > 0 else Decimal("0")

        return {
            "code": code,
            "name": parts[0],
            "current_price": current_price,
            "open": _decimal(parts[1]),
            "close": prev_close,
            "high": _decimal(parts[4]),
            "low": _decimal(parts[5]),
            "volume": int(Decimal(parts[8])),
            "amount": _decimal(parts[9]),
            "change": change,
            "change_percent": change_percent,
            "date": parts[30],
            "time": parts[31],
        }
    except (InvalidOperation, ValueError) as e:
        logger.warning("Malformed Sina quote for %s: %s", code, e)
        return None


def fetch_stock_quote(code: str) -> Optional[Dict]:
    """
    Fetch the real-time quote for a stock.

    Args:
        code: Exchange-prefixed code (e.g., "sh600519", "sz000001")

    Returns:
        Dict with name, current_price, open, close, high, low, volume, change, ...
        or None if the quote could not be fetched or parsed
    """
    try:
        text = _get_text(f"{SINA_QUOTE_URL}{code}")
        return parse_quote(code, text)
    except Exception as e:
        logger.warning("Error fetching Sina quote for %s: %s", code, e)
        return None


def get_quote(code: str) -> Optional[Quote]:
    """Price and display name for the refresh pipeline."""
    data = fetch_stock_quote(code)
    # 0.000 before the open and while suspended
    if data is None or data["current_price"] <= 0:
        return None
    return Quote(code=code, price=data["current_price"], name=data["name"] or None)


def get_kline_params(range_key: str) -> Tuple[int, int]:
    """Map a chart range (1D, 1W, 1M, 3M, 1Y, ALL) to (scale in minutes, number of bars)."""
    return KLINE_PARAMS.get(range_key, KLINE_PARAMS["1D"])


def fetch_kline(code: str, scale: int = 240, datalen: int = 30) -> List[Dict]:
    """
    Fetch candlestick bars.

    Args:
        code: Exchange-prefixed code
        scale: Bar size in minutes (240 = daily)
        datalen: Number of bars

    Returns:
        List of {day, open, high, low, close, volume} dicts, oldest first
    """
    try:
        params = {"symbol": code, "scale": scale, "ma": "no", "datalen": datalen}
        text = _get_text(SINA_KLINE_URL, params=params, encoding="utf-8")

        match = re.search(r"\((\[.*\])\)", text, re.DOTALL)
        if not match:
            return []

        bars = []
        for item in json.loads(match.group(1)):
            bars.append({
                "day": item["day"],
                "open": Decimal(str(item["open"])),
                "high": Decimal(str(item["high"])),
                "low": Decimal(str(item["low"])),
                "close": Decimal(str(item["close"])),
                "volume": int(Decimal(str(item["volume"]))),
            })
        return bars

    except Exception as e:
        logger.warning("Error fetching Sina K-line for %s: %s", code, e)
        return []


def search_stock(keyword: str) -> List[Dict]:
    """
    Search stocks by name, pinyin or code.

    Returns:
        List of {code, name, type} dicts
    """
    try:
        text = _get_text(f"{SINA_SEARCH_URL}{quote(keyword)}")

        match = re.search(r'="(.*)"', text)
        if not match or not match.group(1):
            return []

        results = []
        for entry in match.group(1).split(";"):
            parts = entry.split(",")
            if len(parts) < 4 or not parts[0] or not parts[3]:
                continue
            results.append({"code": parts[3], "name": parts[0], "type": parts[1]})
        return results

    except Exception as e:
        logger.warning("Error searching Sina for %r: %s", keyword, e)
        return []
