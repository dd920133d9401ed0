import math
from datetime import datetime, timezone

from config import ALLOCATION_RULES, BUCKETS, MONTHLY_ADJUSTMENT_DAYS, NEVER_ADJUSTED_DAYS
from trading_day import to_utc, trading_day_code


def _market_value(h: dict) -> float:
    return h["shares"] * h["current_price"]


def _share(value: float, total_value: float) -> float:
    return value / total_value if total_value > 0 else 0.0


def _symbol_values(holdings: list[dict]) -> dict[str, float]:
    """Aggregate market value per symbol across all lots, first-seen order."""
    values: dict[str, float] = {}
    for h in holdings:
        values[h["symbol"]] = values.get(h["symbol"], 0.0) + _market_value(h)
    return values


def etf_warnings(alloc: dict) -> list[str]:
    r = ALLOCATION_RULES
    warnings = []
    if 0 < alloc["ETF"] < r["etf_min"]:
        warnings.append("Underweight")
    if alloc["ETF"] > r["etf_max"]:
        warnings.append("Overweight")
    return warnings


def trading_warnings(alloc: dict, holdings: list[dict], total_value: float) -> list[str]:
    r = ALLOCATION_RULES
    warnings = []
    if 0 < alloc["Trading"] < r["trading_min"]:
        warnings.append("Underweight")
    if alloc["Trading"] > r["trading_max"]:
        warnings.append("Overweight")

    symbol_values = _symbol_values([h for h in holdings if h["bucket"] == "Trading"])
    if 0 < len(symbol_values) < r["trading_count_min"]:
        warnings.append("Count Low")
    if len(symbol_values) > r["trading_count_max"]:
        warnings.append("Count High")

    for symbol, value in symbol_values.items():
        pct = _share(value, total_value)
        if pct > r["trading_symbol_max"]:
            warnings.append(f"Concentrated: {symbol} {pct * 100:.0f}%")
    return warnings


def hedge_warnings(alloc: dict, holdings: list[dict], total_value: float) -> list[str]:
    r = ALLOCATION_RULES
    warnings = []
    if alloc["Hedge"] < r["hedge_min"]:
        warnings.append("Liquidity Low")
    if alloc["Hedge"] > r["hedge_max"]:
        warnings.append("Excess Cash")
    if alloc["HedgeOnly"] > r["hedge_only_max"]:
        warnings.append("Hedge Assets High")

    for symbol, value in _symbol_values([h for h in holdings if h["bucket"] == "Hedge"]).items():
        if _share(value, total_value) > r["hedge_symbol_max"]:
            warnings.append(f"Hedge Pos High: {symbol}")
    return warnings


def days_since(timestamp: str | None, now: datetime) -> int:
    if timestamp is None:
        return NEVER_ADJUSTED_DAYS
    return math.floor((now - to_utc(timestamp)).total_seconds() / 86400)


def compute_allocation(state: dict, now: datetime | None = None) -> dict:
    """
    Derive values, bucket allocation and warnings from a state snapshot.

    Pure: nothing in `state` is modified. Cash counts toward the Hedge bucket
    for allocation; HedgeOnly is the hedge positions alone. Every fraction is 0
    when total value is not positive.

    Returns:
        positions_value, cash_usd, total_value,
        today_change_value, today_change_pct,
        buckets      {ETF, Trading, Hedge, HedgeOnly} -> value
        allocation   {ETF, Trading, Hedge, HedgeOnly} -> fraction of total
        warnings     {ETF, Trading, Hedge} -> list of messages
        positions    per-position rows with market_value, day_change,
                     unrealized_pnl, weight
        days_since_adjustment, needs_adjustment, is_updated_today
    """
    now = now or datetime.now(timezone.utc)
    holdings = state["holdings"]
    cash = state["cash_usd"]

    positions_value = sum(_market_value(h) for h in holdings)
    total_value = positions_value + cash

    today_change_value = sum((h["current_price"] - h["prev_close"]) * h["shares"] for h in holdings)
    base_value = total_value - today_change_value
    today_change_pct = today_change_value / base_value if base_value != 0 else 0.0

    bucket_values = {
        b: sum(_market_value(h) for h in holdings if h["bucket"] == b)
        for b in BUCKETS
    }
    buckets = {
        "ETF":       bucket_values["ETF"],
        "Trading":   bucket_values["Trading"],
        "Hedge":     bucket_values["Hedge"] + cash,
        "HedgeOnly": bucket_values["Hedge"],
    }
    alloc = {name: _share(value, total_value) for name, value in buckets.items()}

    positions = []
    for h in holdings:
        market_value = _market_value(h)
        positions.append({
            "id":             h["id"],
            "symbol":         h["symbol"],
            "bucket":         h["bucket"],
            "shares":         h["shares"],
            "current_price":  h["current_price"],
            "market_value":   market_value,
            "day_change":     (h["current_price"] - h["prev_close"]) * h["shares"],
            "unrealized_pnl": market_value - h["shares"] * h["avg_cost"],
            "weight":         _share(market_value, total_value),
        })

    days_since_adjustment = days_since(state["last_monthly_adjustment"], now)
    last_update = state["last_update"]

    return {
        "positions_value":    positions_value,
        "cash_usd":           cash,
        "total_value":        total_value,
        "today_change_value": today_change_value,
        "today_change_pct":   today_change_pct,
        "buckets":            buckets,
        "allocation":         alloc,
        "warnings": {
            "ETF":     etf_warnings(alloc),
            "Trading": trading_warnings(alloc, holdings, total_value),
            "Hedge":   hedge_warnings(alloc, holdings, total_value),
        },
        "positions":             positions,
        "days_since_adjustment": days_since_adjustment,
        "needs_adjustment":      days_since_adjustment >= MONTHLY_ADJUSTMENT_DAYS,
        "is_updated_today":      last_update is not None and trading_day_code(last_update) == trading_day_code(now),
    }
