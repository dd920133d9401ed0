import math
import logging
import time
from concurrent.futures import ThreadPoolExecutor

import yfinance as yf

logger = logging.getLogger(__name__)

MAX_FETCH_WORKERS = 8


def fetch_single_price(symbol: str) -> float | None:
    """
    Fetch the latest price for one symbol via yf.Ticker().fast_info.
    Returns a float or None on failure. Never raises.

    A fresh Ticker is built on every call so no cached quote is reused.
    NaN, missing and non-positive prices all count as "no price obtained".
    """
    try:
        price = yf.Ticker(symbol).fast_info.last_price
        if price is None:
            return None
        price = float(price)
        if math.isnan(price) or price <= 0:
            return None
        return price

    except Exception:
        return None


def fetch_prices(symbols: list[str]) -> tuple[dict, list[str]]:
    """
    Call fetch_single_price() for every distinct symbol in parallel and join.
    On per-symbol failure: log a warning, continue.
    Returns: (prices keyed by symbol, list of failed symbols)
    """
    symbols = list(dict.fromkeys(symbols))
    results: dict = {}
    failed:  list[str] = []
    if not symbols:
        return results, failed

    with ThreadPoolExecutor(max_workers=min(MAX_FETCH_WORKERS, len(symbols))) as pool:
        prices = list(pool.map(fetch_single_price, symbols))

    for symbol, price in zip(symbols, prices):
        if price is None:
            logger.warning("Failed to fetch price for symbol: %s", symbol)
            failed.append(symbol)
        else:
            results[symbol] = price

    return results, failed


def build_price_draft(holdings: list[dict], fetched: dict[str, float]) -> dict[str, str]:
    """
    Pending price edits: every held symbol pre-filled with its current price
    (first lot wins), overlaid with whatever was fetched.
    """
    draft: dict[str, str] = {}
    for h in holdings:
        draft.setdefault(h["symbol"], str(h["current_price"]))
    for symbol, price in fetched.items():
        draft[symbol] = str(price)
    return draft


def parse_price_edits(edits: dict) -> dict[str, float]:
    """Keep only entries that parse as finite numbers."""
    prices = {}
    for symbol, raw in edits.items():
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value):
            prices[symbol] = value
    return prices


def run_refresh_cycle(store) -> dict:
    """
    Fetch every held symbol and apply the prices that came back as one EOD
    update. Symbols that failed keep their previous price.

    status: SUCCESS (all fetched), PARTIAL (some failed), FAILED (none
    fetched; no EOD update is applied and last_update does not move).
    """
    symbols = store.symbols()
    t0 = time.perf_counter()
    prices, failed = fetch_prices(symbols)
    latency_ms = (time.perf_counter() - t0) * 1000

    summary = {
        "status":            "SUCCESS",
        "symbols_succeeded": len(prices),
        "symbols_failed":    len(failed),
        "failed":            failed,
        "fetch_latency_ms":  latency_ms,
        "new_trading_day":   None,
    }
    if symbols and not prices:
        summary["status"] = "FAILED"
        logger.error("Refresh cycle fetched no prices for %d symbol(s)", len(symbols))
        return summary
    if failed:
        summary["status"] = "PARTIAL"

    eod = store.apply_end_of_day_prices(prices)
    summary["new_trading_day"] = eod["new_trading_day"]
    return summary
