from datetime import datetime, timedelta, timezone

from config import TRADING_DAY_CUTOVER_HOUR, TRADING_DAY_UTC_OFFSET_HOURS

# Not a valid calendar date, so no real instant can ever map to it.
NEVER_UPDATED = "0000-00-00"

MARKET_TZ = timezone(timedelta(hours=TRADING_DAY_UTC_OFFSET_HOURS))


def to_utc(timestamp: datetime | str) -> datetime:
    """Parse an ISO-8601 string or datetime. Naive values are taken as UTC."""
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def trading_day_code(timestamp: datetime | str | None) -> str:
    """
    Map an instant to the trading day it belongs to, as 'YYYY-MM-DD'.

    The instant is read on the UTC+8 wall clock. Anything before 07:00 local
    counts toward the previous calendar day. None (never updated) returns
    NEVER_UPDATED, which differs from every real day code.
    """
    if timestamp is None:
        return NEVER_UPDATED

    local = to_utc(timestamp).astimezone(MARKET_TZ)
    if local.hour < TRADING_DAY_CUTOVER_HOUR:
        local = local - timedelta(days=1)
    return local.date().isoformat()


def is_new_trading_day(now: datetime | str, last: datetime | str | None) -> bool:
    return trading_day_code(now) != trading_day_code(last)
