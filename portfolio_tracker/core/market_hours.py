"""Trading-window policy for the Shanghai/Shenzhen market."""
from datetime import datetime, time
from zoneinfo import ZoneInfo

from portfolio_tracker.core.models import AssetType, classify


MARKET_TZ = ZoneInfo("Asia/Shanghai")

# Continuous auction sessions, both ends inclusive at minute granularity.
EQUITY_SESSIONS = [
    (time(9, 30), time(11, 30)),
    (time(13, 0), time(15, 0)),
]

# Funds publish the day's net asset value in the evening.
FUND_UPDATE_HOURS = range(20, 24)


def to_market_time(now: datetime | None = None, tz: ZoneInfo = MARKET_TZ) -> datetime:
    """Convert to market-local time. Naive datetimes are taken as already market-local."""
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def is_equity_trading_time(now: datetime | None = None, tz: ZoneInfo = MARKET_TZ) -> bool:
    local = to_market_time(now, tz)
    if local.weekday() >= 5:
        return False
    minute = local.time().replace(second=0, microsecond=0)
    return any(start <= minute <= end for start, end in EQUITY_SESSIONS)


def is_fund_update_time(now: datetime | None = None, tz: ZoneInfo = MARKET_TZ) -> bool:
    return to_market_time(now, tz).hour in FUND_UPDATE_HOURS


def is_refresh_due(code: str, now: datetime | None = None, tz: ZoneInfo = MARKET_TZ) -> bool:
    """Whether a live fetch is worthwhile for this code right now."""
    if classify(code) is AssetType.FUND:
        return is_fund_update_time(now, tz)
    return is_equity_trading_time(now, tz)
