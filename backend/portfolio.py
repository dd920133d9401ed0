import copy
import json
import logging
import math
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable

import db
from config import BUCKETS, JOURNAL_KEY, STATE_KEY
from errors import PositionNotFoundError, StorageError, ValidationError
from trading_day import is_new_trading_day, to_utc

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_state() -> dict:
    return {
        "holdings": [],
        "cash_usd": 0.0,
        "last_update": None,
        "last_monthly_adjustment": None,
    }


def _to_float(value, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, f"{field} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ValidationError(field, f"{field} must be a finite number, got {value!r}")
    return number


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_timestamp(value, field: str) -> str | None:
    if _is_blank(value):
        return None
    try:
        return to_utc(value).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(field, f"{field} must be an ISO-8601 timestamp, got {value!r}") from None


def normalize_position(data: dict, existing: dict | None = None) -> dict:
    """
    Build a clean position dict from user input.

    current_price defaults to avg_cost, prev_close defaults to current_price.
    When `existing` is given (an edit), its prev_close is kept: only the EOD
    rollover moves the daily baseline.
    """
    symbol = data.get("symbol")
    if _is_blank(symbol):
        raise ValidationError("symbol", "symbol is required")
    bucket = data.get("bucket", "Trading")
    if bucket not in BUCKETS:
        raise ValidationError("bucket", f"bucket must be one of {', '.join(BUCKETS)}")

    shares = _to_float(data.get("shares", 0), "shares")
    avg_cost = _to_float(data.get("avg_cost", 0), "avg_cost")
    if _is_blank(data.get("current_price")):
        current_price = avg_cost
    else:
        current_price = _to_float(data["current_price"], "current_price")

    if existing is not None:
        prev_close = existing["prev_close"]
    elif _is_blank(data.get("prev_close")):
        prev_close = current_price
    else:
        prev_close = _to_float(data["prev_close"], "prev_close")

    position = {
        "id":            str(data.get("id") or (existing or {}).get("id") or uuid.uuid4().hex),
        "symbol":        str(symbol).strip().upper(),
        "shares":        shares,
        "avg_cost":      avg_cost,
        "current_price": current_price,
        "prev_close":    prev_close,
        "bucket":        bucket,
    }
    notes = data.get("notes")
    if notes:
        position["notes"] = str(notes)
    return position


def normalize_state(data: dict) -> dict:
    """Coerce an imported or loaded state blob into the canonical shape."""
    if not isinstance(data, dict):
        raise ValidationError("state", "state must be an object")
    holdings = data.get("holdings", [])
    if not isinstance(holdings, list):
        raise ValidationError("holdings", "holdings must be a list")
    state = default_state()
    state["holdings"] = [normalize_position(h) for h in holdings]
    state["cash_usd"] = _to_float(data.get("cash_usd", 0.0), "cash_usd")
    for key in ("last_update", "last_monthly_adjustment"):
        state[key] = _to_timestamp(data.get(key), key)
    return state


class PortfolioStore:
    """
    Process-wide holder of the portfolio state and the trade journal.

    Every mutation computes a new state on a copy, swaps it in, writes it
    through `storage` and, once the write succeeds, notifies subscribers. `storage` is anything with
    load_blob/save_blobs (the db module by default); `clock` returns an aware
    UTC datetime.
    """

    def __init__(
        self,
        state: dict | None = None,
        journal: list | None = None,
        storage=db,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._state = copy.deepcopy(state) if state is not None else default_state()
        self._journal = copy.deepcopy(journal) if journal is not None else []
        self._storage = storage
        self._clock = clock
        self._lock = threading.RLock()
        self._subscribers: list[Callable[[dict, list], None]] = []
        self.diagnostics: list[str] = []

    # ─── Loading ─────────────────────────────────────────────────────────────

    @classmethod
    def load(cls, storage=db, clock: Callable[[], datetime] = utc_now) -> "PortfolioStore":
        """
        Read both blobs once. Missing blobs give the defaults; unreadable ones
        also give the defaults and leave a note in `diagnostics`.
        """
        diagnostics = []
        state = _read_blob(storage, STATE_KEY, diagnostics)
        journal = _read_blob(storage, JOURNAL_KEY, diagnostics)

        if state is not None:
            try:
                state = normalize_state(state)
            except ValidationError as exc:
                diagnostics.append(f"{STATE_KEY}: {exc.message}")
                logger.warning("Discarding stored state: %s", exc.message)
                state = None
        if journal is not None and not isinstance(journal, list):
            diagnostics.append(f"{JOURNAL_KEY}: expected a list")
            logger.warning("Discarding stored journal: not a list")
            journal = None

        store = cls(state=state, journal=journal, storage=storage, clock=clock)
        store.diagnostics = diagnostics
        return store

    # ─── Read access ─────────────────────────────────────────────────────────

    @property
    def state(self) -> dict:
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def journal(self) -> list:
        with self._lock:
            return copy.deepcopy(self._journal)

    def get_position(self, position_id: str) -> dict:
        with self._lock:
            for h in self._state["holdings"]:
                if h["id"] == position_id:
                    return copy.deepcopy(h)
        raise PositionNotFoundError(position_id)

    def symbols(self) -> list[str]:
        """Distinct held symbols, in holdings order."""
        with self._lock:
            return list(dict.fromkeys(h["symbol"] for h in self._state["holdings"]))

    def subscribe(self, callback: Callable[[dict, list], None]) -> None:
        self._subscribers.append(callback)

    # ─── Position mutations ──────────────────────────────────────────────────

    def add_position(self, data: dict) -> dict:
        position = normalize_position(data)
        with self._lock:
            state = copy.deepcopy(self._state)
            state["holdings"].append(position)
            self._commit(state=state)
        logger.info("Added position %s (%s) to %s", position["id"], position["symbol"], position["bucket"])
        return copy.deepcopy(position)

    def update_position(self, data: dict) -> dict:
        """Replace the position with the same id. Raises PositionNotFoundError."""
        position_id = data.get("id")
        with self._lock:
            state = copy.deepcopy(self._state)
            for i, h in enumerate(state["holdings"]):
                if h["id"] == position_id:
                    break
            else:
                raise PositionNotFoundError(position_id)
            position = normalize_position(data, existing=h)
            state["holdings"][i] = position
            self._commit(state=state)
        return copy.deepcopy(position)

    def remove_position(self, position_id: str) -> None:
        with self._lock:
            state = copy.deepcopy(self._state)
            state["holdings"] = [h for h in state["holdings"] if h["id"] != position_id]
            self._commit(state=state)

    def set_cash(self, amount: float) -> None:
        amount = _to_float(amount, "cash_usd")
        with self._lock:
            state = copy.deepcopy(self._state)
            state["cash_usd"] = amount
            self._commit(state=state)

    # ─── Lifecycle mutations ─────────────────────────────────────────────────

    def apply_end_of_day_prices(self, prices: dict[str, float]) -> dict:
        """
        Roll prices forward for every position whose symbol is in `prices`.

        On the first update of a new trading day each matching position's
        current_price becomes its prev_close before the new price is written.
        Later updates on the same trading day only overwrite current_price, so
        the daily baseline stays put. last_update always advances to now.

        Returns a summary: trading-day flag and the ids that were updated.
        """
        prices = {str(k).strip().upper(): _to_float(v, str(k)) for k, v in prices.items()}
        now = self._clock()
        with self._lock:
            state = copy.deepcopy(self._state)
            new_day = is_new_trading_day(now, state["last_update"])
            updated = []
            for h in state["holdings"]:
                if h["symbol"] not in prices:
                    continue
                if new_day:
                    h["prev_close"] = h["current_price"]
                h["current_price"] = prices[h["symbol"]]
                updated.append(h["id"])
            state["last_update"] = now.isoformat()
            self._commit(state=state)

        logger.info(
            "EOD update: %d position(s) repriced, new_trading_day=%s",
            len(updated), new_day,
        )
        return {"new_trading_day": new_day, "updated_ids": updated, "last_update": state["last_update"]}

    def mark_monthly_adjustment(self) -> None:
        with self._lock:
            state = copy.deepcopy(self._state)
            state["last_monthly_adjustment"] = self._clock().isoformat()
            self._commit(state=state)

    def replace_all(self, state: dict, journal: list) -> None:
        """Swap in a whole new state and journal in one write (restore)."""
        with self._lock:
            self._commit(state=copy.deepcopy(state), journal=copy.deepcopy(journal))
        logger.info(
            "Replaced portfolio: %d holding(s), %d journal entr(ies)",
            len(state["holdings"]), len(journal),
        )

    # ─── Journal ─────────────────────────────────────────────────────────────

    def add_journal_entry(self, entry: dict) -> None:
        with self._lock:
            self._commit(journal=[copy.deepcopy(entry)] + copy.deepcopy(self._journal))

    def delete_journal_entry(self, entry_id: str) -> None:
        with self._lock:
            self._commit(journal=[e for e in copy.deepcopy(self._journal) if e.get("id") != entry_id])

    def clear_journal(self) -> None:
        with self._lock:
            self._commit(journal=[])

    # ─── Internals ───────────────────────────────────────────────────────────

    def _commit(self, state: dict | None = None, journal: list | None = None) -> None:
        # Serialize before swapping so an unencodable value leaves nothing changed.
        blobs = {}
        if state is not None:
            blobs[STATE_KEY] = json.dumps(state, allow_nan=False)
        if journal is not None:
            blobs[JOURNAL_KEY] = json.dumps(journal, allow_nan=False)

        if state is not None:
            self._state = state
        if journal is not None:
            self._journal = journal
        self._storage.save_blobs(blobs)
        self._publish()

    def _publish(self) -> None:
        if not self._subscribers:
            return
        state, journal = copy.deepcopy(self._state), copy.deepcopy(self._journal)
        for callback in self._subscribers:
            callback(state, journal)


def _read_blob(storage, key: str, diagnostics: list):
    try:
        payload = storage.load_blob(key)
    except (sqlite3.Error, StorageError) as exc:
        diagnostics.append(f"{key}: {exc}")
        logger.warning("Failed to load %s, using defaults: %s", key, exc)
        return None
    if payload is None:
        return None
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as exc:
        diagnostics.append(f"{key}: {exc}")
        logger.warning("Failed to parse %s, using defaults: %s", key, exc)
        return None
