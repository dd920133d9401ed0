import copy
import logging
import math
import random
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable

from config import (
    BUCKETS, CHECKLIST_STEPS, COACH_QUOTES, SCORE_CONSIDER, SCORE_GO, SCORE_WATCH,
    STEP_POINTS, VETO_REASONS,
)
from errors import ChecklistValidationError, StorageError

logger = logging.getLogger(__name__)

DIRECTIONS = ("Long", "Short")
ACTIONS = ("Buy", "Sell")
FORM_FIELDS = ("symbol", "price", "direction", "action", "bucket", "veto_note", "user_notes", "risk_calc")


def fresh_steps() -> list[dict]:
    return [{**step, "status": "pending", "note": ""} for step in CHECKLIST_STEPS]


def score_steps(steps: list[dict]) -> tuple[int, bool]:
    """Return (raw score, complete). A pending step adds nothing and makes it incomplete."""
    score = sum(STEP_POINTS[s["status"]] for s in steps)
    complete = all(s["status"] != "pending" for s in steps)
    return score, complete


def verdict(steps: list[dict], vetoes: list[str]) -> dict:
    """
    Turn graded steps and vetoes into score, label and result.

    First match wins: any veto or a failed step 1 -> Avoid/banned;
    >= 19 Go/tradable; >= 16 Consider/tradable; >= 13 Watch/watch;
    anything lower Avoid/banned.
    """
    score, complete = score_steps(steps)
    step1_failed = any(s["id"] == 1 and s["status"] == "fail" for s in steps)

    if vetoes or step1_failed:
        label, result = "Avoid", "banned"
    elif score >= SCORE_GO:
        label, result = "Go", "tradable"
    elif score >= SCORE_CONSIDER:
        label, result = "Consider", "tradable"
    elif score >= SCORE_WATCH:
        label, result = "Watch", "watch"
    else:
        label, result = "Avoid", "banned"
    return {"score": score, "label": label, "result": result, "complete": complete}


def coach_quote(result: str, rng: random.Random | None = None) -> str:
    return (rng or random).choice(COACH_QUOTES[result])


class ChecklistSession:
    """
    One pre-trade checklist: seven graded steps, veto reasons and the trade
    form. A successful submit hands a journal entry to the sink and resets the
    session to its start state.

    An RLock serializes edits; the HTTP layer calls in from worker threads.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.steps = fresh_steps()
            self.vetoes: list[str] = []
            self.symbol = ""
            self.price = ""
            self.direction = "Long"
            self.action = "Buy"
            self.bucket = "Trading"
            self.veto_note = ""
            self.user_notes = ""
            self.risk_calc: dict | None = None

    # ─── Editing ─────────────────────────────────────────────────────────────

    def set_step(self, step_id: int, status: str, note: str | None = None) -> None:
        if status not in STEP_POINTS:
            raise ChecklistValidationError("status", f"status must be one of {', '.join(STEP_POINTS)}")
        with self._lock:
            for step in self.steps:
                if step["id"] == step_id:
                    step["status"] = status
                    if note is not None:
                        step["note"] = note
                    return
        raise ChecklistValidationError("step", f"No checklist step {step_id}")

    def toggle_veto(self, reason: str) -> bool:
        """Select or clear a veto reason. Returns True when it is now selected."""
        if reason not in VETO_REASONS:
            raise ChecklistValidationError("vetoes", f"Unknown veto reason {reason!r}")
        with self._lock:
            if reason in self.vetoes:
                self.vetoes.remove(reason)
                return False
            self.vetoes.append(reason)
            return True

    def set_form(self, **fields) -> None:
        unknown = set(fields) - set(FORM_FIELDS)
        if unknown:
            raise ChecklistValidationError(sorted(unknown)[0], f"Unknown checklist field(s): {', '.join(sorted(unknown))}")
        if "direction" in fields and fields["direction"] not in DIRECTIONS:
            raise ChecklistValidationError("direction", "direction must be Long or Short")
        if "action" in fields and fields["action"] not in ACTIONS:
            raise ChecklistValidationError("action", "action must be Buy or Sell")
        if "bucket" in fields and fields["bucket"] not in BUCKETS:
            raise ChecklistValidationError("bucket", f"bucket must be one of {', '.join(BUCKETS)}")
        with self._lock:
            for name, value in fields.items():
                setattr(self, name, value)

    # ─── Evaluation ──────────────────────────────────────────────────────────

    def evaluate(self) -> dict:
        with self._lock:
            return verdict(self.steps, self.vetoes)

    def validate(self) -> dict:
        """Raise ChecklistValidationError for the first missing field, else return the verdict."""
        with self._lock:
            if not str(self.symbol).strip():
                raise ChecklistValidationError("symbol", "Symbol is required")
            price = str(self.price).strip()
            if not price:
                raise ChecklistValidationError("price", "Price is required")
            try:
                parsed = float(price)
            except ValueError:
                raise ChecklistValidationError("price", f"Price must be numeric, got {price!r}") from None
            if not math.isfinite(parsed):
                raise ChecklistValidationError("price", f"Price must be numeric, got {price!r}")

            result = self.evaluate()
            if not result["complete"]:
                pending = [s["id"] for s in self.steps if s["status"] == "pending"]
                raise ChecklistValidationError("steps", f"All 7 steps must be graded; pending: {pending}")
            if result["result"] == "banned" and self.vetoes and not str(self.veto_note).strip():
                raise ChecklistValidationError("veto_note", "A justification note is required when a veto is triggered")
            return result

    def submit(self, sink: Callable[[dict], None]) -> dict:
        """
        Validate, build the journal entry, pass it to `sink`, then reset.

        Nothing reaches the sink when validation fails, and the session is left
        as it was so the user can fix the missing field. Once the sink holds
        the entry the session resets even if the sink's durable write raised
        StorageError, so a retry cannot journal the same trade twice.
        """
        with self._lock:
            result = self.validate()
            entry = {
                "id":          uuid.uuid4().hex,
                "date":        self._clock().isoformat(),
                "symbol":      str(self.symbol).strip().upper(),
                "direction":   self.direction,
                "action":      self.action,
                "price":       float(str(self.price).strip()),
                "bucket":      self.bucket,
                "steps":       copy.deepcopy(self.steps),
                "vetoes":      list(self.vetoes),
                "veto_note":   self.veto_note,
                "result":      result["result"],
                "score":       result["score"],
                "score_label": result["label"],
                "user_notes":  self.user_notes,
            }
            if self.risk_calc is not None:
                entry["risk_calc"] = dict(self.risk_calc)

            try:
                sink(entry)
            except StorageError:
                logger.error("Journal entry %s kept in memory but not saved", entry["id"])
                self.reset()
                raise
            logger.info("Journal entry %s: %s %s -> %s (%d)",
                        entry["id"], entry["action"], entry["symbol"], entry["result"], entry["score"])
            self.reset()
            return entry

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "symbol":     self.symbol,
                "price":      self.price,
                "direction":  self.direction,
                "action":     self.action,
                "bucket":     self.bucket,
                "steps":      copy.deepcopy(self.steps),
                "vetoes":     list(self.vetoes),
                "veto_note":  self.veto_note,
                "user_notes": self.user_notes,
                "risk_calc":  copy.deepcopy(self.risk_calc),
                **self.evaluate(),
            }
