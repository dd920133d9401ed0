import math

from config import DEFAULT_RISK_PCT, HIGH_CONCENTRATION_PCT


def account_equity(state: dict) -> float:
    return sum(h["shares"] * h["current_price"] for h in state["holdings"]) + state["cash_usd"]


def size_position(
    equity: float,
    entry: float | None,
    stop: float | None,
    target: float | None = None,
    risk_pct: float = DEFAULT_RISK_PCT,
) -> dict:
    """
    Size a position so that hitting the stop costs exactly 1R.

    1R = equity * risk_pct / 100. Shares are floored to whole units. Nothing is
    sized (shares = 0) until entry and stop are both set and differ. rr is only
    filled when a target is given.
    """
    risk_amount = equity * (risk_pct / 100)
    result = {
        "equity":             equity,
        "risk_pct":           risk_pct,
        "risk_amount":        risk_amount,
        "entry":              entry,
        "stop":               stop,
        "target":             target,
        "risk_per_share":     0.0,
        "shares":             0,
        "total_cost":         0.0,
        "rr":                 None,
        "high_concentration": False,
    }
    if not entry or not stop or entry == stop:
        return result

    risk_per_share = abs(entry - stop)
    shares = max(math.floor(risk_amount / risk_per_share), 0)
    total_cost = shares * entry
    result.update({
        "risk_per_share": risk_per_share,
        "shares":         shares,
        "total_cost":     total_cost,
    })
    if target:
        result["rr"] = abs(target - entry) / risk_per_share
    if equity > 0 and total_cost / equity > HIGH_CONCENTRATION_PCT:
        result["high_concentration"] = True
    return result


def snapshot(sizing: dict) -> dict:
    """The subset of a sizing result that is stored on a journal entry."""
    return {
        "entry":       sizing["entry"],
        "stop":        sizing["stop"],
        "target":      sizing["target"],
        "shares":      sizing["shares"],
        "risk_amount": sizing["risk_amount"],
        "rr":          sizing["rr"],
    }
